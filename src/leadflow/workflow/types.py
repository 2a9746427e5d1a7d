"""Domain types for the lead workflow engine.

Kept separate from the ORM models so the transition rules and the
escalation evaluator stay pure: they only ever see these frozen values.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, NewType, Union

from leadflow.db.models import (
    AssigneeType,
    CommunicationType,
    LeadCommunication,
    LeadWorkflowState,
    SenderType,
    Stage,
)
from leadflow.workflow.errors import ValidationError

LeadId = NewType("LeadId", str)
Adid = NewType("Adid", str)


def require_id(value: str | None, what: str, lead_id: str | None = None) -> str:
    """Strip and validate an identifier at the engine boundary."""
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{what} is required", lead_id=lead_id)
    return cleaned


# ═══════════════════════════════════════════════════════════════════════════
# AI CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════

class ReplyDecision(str, Enum):
    """Closed set of outcomes a reply classifier may return."""
    NOT_INTERESTED = "Dealer Not Interested"
    NEEDS_ADMIN_REVIEW = "Admin Review"
    FOLLOW_UP = "FollowUp"
    UNCLASSIFIED = "Unclassified"

    @classmethod
    def from_label(cls, label: str | None) -> ReplyDecision:
        """Normalize a free-text classifier label into the closed enum."""
        if not label:
            return cls.UNCLASSIFIED
        text = label.strip().lower()
        if "not interested" in text:
            return cls.NOT_INTERESTED
        if "admin" in text and "review" in text:
            return cls.NEEDS_ADMIN_REVIEW
        if text.replace("-", "").replace(" ", "") == "followup":
            return cls.FOLLOW_UP
        return cls.UNCLASSIFIED


@dataclass(frozen=True)
class AIResult:
    summary: str
    decision: ReplyDecision
    tokens_consumed: int = 0


# ═══════════════════════════════════════════════════════════════════════════
# ENTITIES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Attachment:
    name: str
    size: str
    type: str
    url: str | None = None


@dataclass(frozen=True)
class WorkflowState:
    """Snapshot of one lead's workflow row."""

    id: uuid.UUID
    lead_id: LeadId
    current_stage: Stage
    current_assignee_type: AssigneeType
    current_assignee_id: Adid
    rm_id: Adid
    psm_id: Adid
    last_stage_change_at: datetime
    last_communication_at: datetime
    next_follow_up_at: datetime
    escalation_level: int
    created_at: datetime
    updated_at: datetime
    dropped_reason: str | None = None
    last_reminder_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.current_stage.is_terminal

    @classmethod
    def from_row(cls, row: LeadWorkflowState) -> WorkflowState:
        return cls(
            id=row.id,
            lead_id=LeadId(row.lead_id),
            current_stage=Stage(row.current_stage),
            current_assignee_type=AssigneeType(row.current_assignee_type),
            current_assignee_id=Adid(row.current_assignee_id),
            rm_id=Adid(row.rm_id),
            psm_id=Adid(row.psm_id),
            last_stage_change_at=row.last_stage_change_at,
            last_communication_at=row.last_communication_at,
            next_follow_up_at=row.next_follow_up_at,
            escalation_level=row.escalation_level,
            created_at=row.created_at,
            updated_at=row.updated_at,
            dropped_reason=row.dropped_reason,
            last_reminder_at=row.last_reminder_at,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["id"] = str(self.id)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
            elif isinstance(value, Enum):
                data[key] = value.value
        return data


@dataclass(frozen=True)
class CommunicationRecord:
    """One ledger entry. ``id`` and ``timestamp`` are filled in on append."""

    lead_id: LeadId
    type: CommunicationType
    title: str
    body: str
    sender_type: SenderType
    sender_id: str
    recipient_id: str
    cc_ids: tuple[str, ...] = ()
    ai_summary: str | None = None
    ai_decision: str | None = None
    ai_tokens_consumed: int | None = None
    attachments: tuple[Attachment, ...] = ()
    related_workflow_state_id: uuid.UUID | None = None
    id: uuid.UUID | None = None
    timestamp: datetime | None = None

    @classmethod
    def from_row(cls, row: LeadCommunication) -> CommunicationRecord:
        return cls(
            id=row.id,
            lead_id=LeadId(row.lead_id),
            timestamp=row.timestamp,
            type=CommunicationType(row.type),
            title=row.title,
            body=row.body,
            sender_type=SenderType(row.sender_type),
            sender_id=row.sender_id,
            recipient_id=row.recipient_id,
            cc_ids=tuple(row.cc_ids or ()),
            ai_summary=row.ai_summary,
            ai_decision=row.ai_decision,
            ai_tokens_consumed=row.ai_tokens_consumed,
            attachments=tuple(Attachment(**a) for a in (row.attachments or ())),
            related_workflow_state_id=row.related_workflow_state_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "lead_id": self.lead_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "type": self.type.value,
            "title": self.title,
            "body": self.body,
            "sender_type": self.sender_type.value,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "cc_ids": list(self.cc_ids),
            "ai_summary": self.ai_summary,
            "ai_decision": self.ai_decision,
            "ai_tokens_consumed": self.ai_tokens_consumed,
            "attachments": [asdict(a) for a in self.attachments],
            "related_workflow_state_id": (
                str(self.related_workflow_state_id)
                if self.related_workflow_state_id else None
            ),
        }


# ═══════════════════════════════════════════════════════════════════════════
# STATE CHANGES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StateUpdate:
    """Typed partial update of a workflow row. ``None`` means "leave as is"."""

    current_stage: Stage | None = None
    current_assignee_type: AssigneeType | None = None
    current_assignee_id: str | None = None
    rm_id: str | None = None
    last_stage_change_at: datetime | None = None
    last_communication_at: datetime | None = None
    next_follow_up_at: datetime | None = None
    last_reminder_at: datetime | None = None
    escalation_level: int | None = None
    dropped_reason: str | None = None

    def changes(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class Transition:
    """Outcome of applying one event to a state: a partial update plus its ledger entry."""

    update: StateUpdate
    record: CommunicationRecord


# ═══════════════════════════════════════════════════════════════════════════
# TRANSITION INTENTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AssignLead:
    rm_id: str
    body: str
    title: str


@dataclass(frozen=True)
class RMReply:
    rm_id: str
    reply_text: str
    ai_result: AIResult | None = None
    attachments: tuple[Attachment, ...] = ()


@dataclass(frozen=True)
class ReassignToRM:
    psm_id: str
    note: str = ""
    target_rm_id: str | None = None


@dataclass(frozen=True)
class DropLead:
    psm_id: str
    reason: str = ""


@dataclass(frozen=True)
class CloseLead:
    psm_id: str
    note: str = ""
    bulk: bool = False


@dataclass(frozen=True)
class SendBackToRM:
    psm_id: str
    note: str


@dataclass(frozen=True)
class ManualStageChange:
    actor_id: str
    target: Stage
    note: str = ""


@dataclass(frozen=True)
class ResumeFromAdminReview:
    reviewer_id: str
    assign_to: AssigneeType
    assignee_id: str | None = None
    note: str = ""


@dataclass(frozen=True)
class AddNote:
    author_id: str
    sender_type: SenderType
    text: str


Intent = Union[
    AssignLead,
    RMReply,
    ReassignToRM,
    DropLead,
    CloseLead,
    SendBackToRM,
    ManualStageChange,
    ResumeFromAdminReview,
    AddNote,
]


class DecisionKind(str, Enum):
    """PSM decisions accepted by ``record_psm_decision``."""
    REASSIGN = "reassign"
    DROP = "drop"
    CLOSE = "close"
    SEND_BACK_TO_RM = "sendBackToRM"


def decision_intent(
    kind: DecisionKind,
    psm_id: str,
    note: str = "",
    target_rm_id: str | None = None,
) -> Intent:
    """Build the tagged intent for a PSM decision."""
    if kind is DecisionKind.REASSIGN:
        return ReassignToRM(psm_id=psm_id, note=note, target_rm_id=target_rm_id)
    if kind is DecisionKind.DROP:
        return DropLead(psm_id=psm_id, reason=note)
    if kind is DecisionKind.CLOSE:
        return CloseLead(psm_id=psm_id, note=note)
    if kind is DecisionKind.SEND_BACK_TO_RM:
        return SendBackToRM(psm_id=psm_id, note=note)
    raise ValidationError(f"unsupported PSM decision: {kind!r}")


@dataclass
class SweepResult:
    """Aggregate counters for one escalation sweep."""

    processed: int = 0
    reminded: int = 0
    escalated: int = 0
    errors: int = 0
    stopped: bool = False
    failed_leads: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "escalated": self.escalated,
            "reminded": self.reminded,
            "errors": self.errors,
            "stopped": self.stopped,
        }
