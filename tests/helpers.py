"""Test helpers shared across modules: a fake clock and state builders."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from leadflow.db.models import AssigneeType, Stage
from leadflow.workflow.types import Adid, LeadId, WorkflowState

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock. Tests move it with ``advance``."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, days: float = 0, hours: float = 0, seconds: float = 0) -> datetime:
        self.current += timedelta(days=days, hours=hours, seconds=seconds)
        return self.current


def make_state(**overrides) -> WorkflowState:
    """A WorkflowState in AwaitingRMReply at T0, owned by R1, PSM P1."""
    values = dict(
        id=uuid.uuid4(),
        lead_id=LeadId("L1"),
        current_stage=Stage.AWAITING_RM_REPLY,
        current_assignee_type=AssigneeType.RM,
        current_assignee_id=Adid("R1"),
        rm_id=Adid("R1"),
        psm_id=Adid("P1"),
        last_stage_change_at=T0,
        last_communication_at=T0,
        next_follow_up_at=T0 + timedelta(days=7),
        escalation_level=0,
        created_at=T0,
        updated_at=T0,
    )
    values.update(overrides)
    return WorkflowState(**values)
