"""leadflow database models.

Two tables, both keyed off the externally owned lead id:
- lead_workflow_states: one mutable row per lead (current owner + timing)
- lead_communications: append-only ledger, never updated or deleted

Design principles:
- Portable column types (JSONB on PostgreSQL, JSON elsewhere)
- Timestamps are always timezone-aware UTC, on every dialect
- No soft deletes: leads are archived by stage (Dropped / ClosedLead)
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Enum as SQLEnum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB as _JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class JSONB(TypeDecorator):
    """JSON column that uses JSONB on PostgreSQL and handles UUID/datetime/Enum values."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(_JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        """Convert Python objects to JSON-serializable format before storing."""
        if value is None:
            return None
        return json.loads(json.dumps(value, default=self._json_default))

    @staticmethod
    def _json_default(obj: Any) -> Any:
        """JSON serializer for objects not serializable by default."""
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that round-trips as UTC.

    SQLite drops tzinfo on the way back; this re-attaches it so values read
    from the store compare cleanly with ``datetime.now(timezone.utc)``.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTC column")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base with the portable column type map."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
        list[str]: JSONB,
        datetime: UTCDateTime,
    }


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class Stage(str, Enum):
    """Where a lead sits in the RM → PSM workflow."""
    ASSIGNMENT_EMAIL_PENDING = "AssignmentEmailPending"
    AWAITING_RM_REPLY = "AwaitingRMReply"
    REASSIGNMENT_EMAIL_PENDING = "ReassignmentEmailPending"
    ESCALATION_1 = "Escalation1"
    ESCALATION_2 = "Escalation2"
    PSM_REVIEW_PENDING = "PSM_ReviewPending"     # Auto-escalated to the PSM
    PSM_ASSIGNED = "PSM_Assigned"                # Explicitly handed to the PSM
    PSM_AWAITING_ACTION = "PSM_AwaitingAction"
    ADMIN_REVIEW_PENDING = "AdminReviewPending"  # Parked for a human reviewer
    DROPPED = "Dropped"
    CLOSED_LEAD = "ClosedLead"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STAGES


TERMINAL_STAGES = frozenset({Stage.DROPPED, Stage.CLOSED_LEAD})


class AssigneeType(str, Enum):
    """Who currently owns the next action on a lead."""
    RM = "RM"
    PSM = "PSM"
    SYSTEM = "System"


class SenderType(str, Enum):
    SYSTEM = "System"
    RM = "RM"
    PSM = "PSM"
    USER = "User"


class CommunicationType(str, Enum):
    """Ledger entry kinds."""
    ASSIGNMENT_EMAIL = "assignment_email"
    RM_REPLY = "rm_reply"
    SYSTEM_REMINDER = "system_reminder"
    SYSTEM_ESCALATION = "system_escalation"
    PSM_REASSIGN = "psm_reassign"
    PSM_DROP = "psm_drop"
    PSM_SEND_BACK = "psm_send_back"
    PSM_CLOSE = "psm_close"
    PSM_BULK_CLOSE = "psm_bulk_close"
    STAGE_UPDATE = "stage_update"
    AI_ASSESSMENT = "ai_assessment"
    NOTE = "note"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


# ═══════════════════════════════════════════════════════════════════════════════
# WORKFLOW TABLES
# ═══════════════════════════════════════════════════════════════════════════════

class LeadWorkflowState(Base):
    """Current ownership and timing of one lead. Exactly one row per lead."""

    __tablename__ = "lead_workflow_states"
    __table_args__ = (
        Index("ix_lead_workflow_states_lead_id", "lead_id", unique=True),
        Index("ix_lead_workflow_states_stage", "current_stage"),
        Index("ix_lead_workflow_states_assignee", "current_assignee_id", "current_stage"),
        {"comment": "Per-lead workflow state machine"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    lead_id: Mapped[str] = mapped_column(
        String(64), nullable=False,
        comment="Externally owned lead record id",
    )

    current_stage: Mapped[Stage] = mapped_column(
        SQLEnum(Stage, name="workflowstage", values_callable=_enum_values, length=40),
        nullable=False,
    )
    current_assignee_type: Mapped[AssigneeType] = mapped_column(
        SQLEnum(AssigneeType, name="assigneetype", values_callable=_enum_values, length=10),
        nullable=False,
    )
    current_assignee_id: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="ADID or system sentinel"
    )
    rm_id: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="RM the lead was (re)assigned to"
    )
    psm_id: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="PSM of the lead's anchor"
    )

    # Timing
    last_stage_change_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_communication_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    next_follow_up_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_reminder_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    escalation_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    dropped_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class LeadCommunication(Base):
    """Append-only ledger row: every email, reply and decision on a lead."""

    __tablename__ = "lead_communications"
    __table_args__ = (
        Index("ix_lead_communications_lead_ts", "lead_id", "timestamp", "seq"),
        Index("ix_lead_communications_recipient", "recipient_id", "timestamp"),
        {"comment": "Append-only communication ledger"},
    )

    seq: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True,
        comment="Insertion order, tie-breaker for equal timestamps",
    )
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4
    )
    lead_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    type: Mapped[CommunicationType] = mapped_column(
        SQLEnum(CommunicationType, name="communicationtype", values_callable=_enum_values, length=40),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")

    sender_type: Mapped[SenderType] = mapped_column(
        SQLEnum(SenderType, name="sendertype", values_callable=_enum_values, length=10),
        nullable=False,
    )
    sender_id: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(255), nullable=False)
    cc_ids: Mapped[list[str]] = mapped_column(JSONB, default=list, nullable=False)

    # AI classification of RM replies
    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_decision: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ai_tokens_consumed: Mapped[int | None] = mapped_column(Integer, nullable=True)

    attachments: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, default=list, nullable=False,
        comment="[{name, size, type, url}]",
    )
    related_workflow_state_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
