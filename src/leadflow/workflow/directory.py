"""Lead and hierarchy lookups owned by the host application.

The engine never stores dealer details or the org chart. It asks a
``LeadDirectory`` when it needs them: to reject unknown lead ids, to fill
in the assignment email, and to find an RM's manager for escalation CCs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class LeadProfile:
    lead_id: str
    dealer_name: str = ""
    anchor_name: str = ""
    rm_name: str = ""
    contact_person: str = ""
    mobile: str = ""
    email: str = ""
    city: str = ""
    pincode: str = ""
    address: str = ""


@runtime_checkable
class LeadDirectory(Protocol):
    async def get_lead(self, lead_id: str) -> LeadProfile | None: ...

    async def manager_of(self, adid: str) -> str | None: ...


@dataclass
class StaticLeadDirectory:
    """In-memory directory, loaded once from master data or fixtures."""

    leads: dict[str, LeadProfile] = field(default_factory=dict)
    managers: dict[str, str] = field(default_factory=dict)

    def add_lead(self, profile: LeadProfile) -> None:
        self.leads[profile.lead_id] = profile

    async def get_lead(self, lead_id: str) -> LeadProfile | None:
        return self.leads.get(lead_id)

    async def manager_of(self, adid: str) -> str | None:
        return self.managers.get(adid)
