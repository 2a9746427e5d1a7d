"""Lead workflow schema: workflow states and the communication ledger.

Revision ID: b7e4c2a91f03
Revises:
Create Date: 2026-10-19 01:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers
revision: str = "b7e4c2a91f03"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_STAGES = (
    "AssignmentEmailPending", "AwaitingRMReply", "ReassignmentEmailPending",
    "Escalation1", "Escalation2", "PSM_ReviewPending", "PSM_Assigned",
    "PSM_AwaitingAction", "AdminReviewPending", "Dropped", "ClosedLead",
)
_ASSIGNEE_TYPES = ("RM", "PSM", "System")
_SENDER_TYPES = ("System", "RM", "PSM", "User")
_COMMUNICATION_TYPES = (
    "assignment_email", "rm_reply", "system_reminder", "system_escalation",
    "psm_reassign", "psm_drop", "psm_send_back", "psm_close", "psm_bulk_close",
    "stage_update", "ai_assessment", "note",
)

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "lead_workflow_states",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("lead_id", sa.String(64), nullable=False, comment="Externally owned lead record id"),
        sa.Column(
            "current_stage",
            sa.Enum(*_STAGES, name="workflowstage", length=40),
            nullable=False,
        ),
        sa.Column(
            "current_assignee_type",
            sa.Enum(*_ASSIGNEE_TYPES, name="assigneetype", length=10),
            nullable=False,
        ),
        sa.Column("current_assignee_id", sa.String(255), nullable=False, comment="ADID or system sentinel"),
        sa.Column("rm_id", sa.String(255), nullable=False, comment="RM the lead was (re)assigned to"),
        sa.Column("psm_id", sa.String(255), nullable=False, comment="PSM of the lead's anchor"),
        sa.Column("last_stage_change_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_communication_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_follow_up_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_reminder_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalation_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("dropped_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        comment="Per-lead workflow state machine",
    )
    op.create_index("ix_lead_workflow_states_lead_id", "lead_workflow_states", ["lead_id"], unique=True)
    op.create_index("ix_lead_workflow_states_stage", "lead_workflow_states", ["current_stage"])
    op.create_index(
        "ix_lead_workflow_states_assignee",
        "lead_workflow_states",
        ["current_assignee_id", "current_stage"],
    )

    op.create_table(
        "lead_communications",
        sa.Column("seq", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False, unique=True),
        sa.Column("lead_id", sa.String(64), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "type",
            sa.Enum(*_COMMUNICATION_TYPES, name="communicationtype", length=40),
            nullable=False,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column(
            "sender_type",
            sa.Enum(*_SENDER_TYPES, name="sendertype", length=10),
            nullable=False,
        ),
        sa.Column("sender_id", sa.String(255), nullable=False),
        sa.Column("recipient_id", sa.String(255), nullable=False),
        sa.Column("cc_ids", _JSON, nullable=False),
        sa.Column("ai_summary", sa.Text(), nullable=True),
        sa.Column("ai_decision", sa.String(64), nullable=True),
        sa.Column("ai_tokens_consumed", sa.Integer(), nullable=True),
        sa.Column("attachments", _JSON, nullable=False, comment="[{name, size, type, url}]"),
        sa.Column("related_workflow_state_id", sa.Uuid(as_uuid=True), nullable=True),
        comment="Append-only communication ledger",
    )
    op.create_index(
        "ix_lead_communications_lead_ts",
        "lead_communications",
        ["lead_id", "timestamp", "seq"],
    )
    op.create_index(
        "ix_lead_communications_recipient",
        "lead_communications",
        ["recipient_id", "timestamp"],
    )


def downgrade() -> None:
    op.drop_index("ix_lead_communications_recipient", table_name="lead_communications")
    op.drop_index("ix_lead_communications_lead_ts", table_name="lead_communications")
    op.drop_table("lead_communications")
    op.drop_index("ix_lead_workflow_states_assignee", table_name="lead_workflow_states")
    op.drop_index("ix_lead_workflow_states_stage", table_name="lead_workflow_states")
    op.drop_index("ix_lead_workflow_states_lead_id", table_name="lead_workflow_states")
    op.drop_table("lead_workflow_states")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_name in ("communicationtype", "sendertype", "assigneetype", "workflowstage"):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
