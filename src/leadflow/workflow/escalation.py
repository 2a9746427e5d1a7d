"""Escalation evaluator.

Pure and deterministic given ``(state, now, policy)``. Decides whether an
idle RM-owned lead is due a reminder or the next escalation level, and what
the resulting state update looks like. The sweep applies the decision.

Ladder:
    level 0 -> 1   Escalation1        (RM keeps the lead)
    level 1 -> 2   Escalation2        (RM keeps the lead, manager CC'd)
    level 2 -> 3   PSM_ReviewPending  (lead moves to the PSM)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from leadflow.config import EscalationPolicy
from leadflow.db.models import AssigneeType, CommunicationType, SenderType, Stage
from leadflow.workflow import messages
from leadflow.workflow.errors import InconsistentStateError
from leadflow.workflow.types import CommunicationRecord, StateUpdate, WorkflowState

MAX_ESCALATION_LEVEL = 3

ESCALATION_LADDER: dict[int, tuple[Stage, AssigneeType]] = {
    1: (Stage.ESCALATION_1, AssigneeType.RM),
    2: (Stage.ESCALATION_2, AssigneeType.RM),
    3: (Stage.PSM_REVIEW_PENDING, AssigneeType.PSM),
}


class EscalationAction(str, Enum):
    REMINDER = "reminder"
    ESCALATION = "escalation"


@dataclass(frozen=True)
class EscalationDecision:
    action: EscalationAction
    days_since_stage_change: int
    new_level: int
    update: StateUpdate

    @property
    def is_escalation(self) -> bool:
        return self.action is EscalationAction.ESCALATION


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed, floored. Negative spans (clock skew) count as zero."""
    return max((later - earlier) // timedelta(days=1), 0)


def evaluate(
    state: WorkflowState,
    now: datetime,
    policy: EscalationPolicy,
) -> EscalationDecision | None:
    """Return the reminder/escalation due for ``state`` at ``now``, or None."""
    if state.is_terminal:
        return None

    level = state.escalation_level
    if not 0 <= level <= MAX_ESCALATION_LEVEL:
        raise InconsistentStateError(
            f"escalation level {level} outside 0..{MAX_ESCALATION_LEVEL}",
            lead_id=state.lead_id,
        )

    if state.current_assignee_type is not AssigneeType.RM:
        return None
    if state.current_stage is Stage.PSM_REVIEW_PENDING:
        return None

    days = days_between(state.last_stage_change_at, now)

    if level == 0 and policy.reminder_after_days <= days < policy.escalation_level_1_days:
        if state.last_reminder_at is not None and state.last_reminder_at >= state.last_stage_change_at:
            return None
        return EscalationDecision(
            action=EscalationAction.REMINDER,
            days_since_stage_change=days,
            new_level=0,
            update=StateUpdate(
                next_follow_up_at=now + timedelta(days=policy.reminder_follow_up_days),
                last_reminder_at=now,
            ),
        )

    thresholds = {
        0: policy.escalation_level_1_days,
        1: policy.escalation_level_2_days,
        2: policy.escalation_to_psm_days,
    }
    if level not in thresholds or days < thresholds[level]:
        return None

    new_level = level + 1
    new_stage, assignee_type = ESCALATION_LADDER[new_level]
    update = StateUpdate(
        current_stage=new_stage,
        escalation_level=new_level,
        last_stage_change_at=now,
        next_follow_up_at=now + timedelta(days=policy.escalation_follow_up_days),
        current_assignee_type=assignee_type,
        current_assignee_id=state.psm_id if assignee_type is AssigneeType.PSM else None,
    )
    decision = EscalationDecision(
        action=EscalationAction.ESCALATION,
        days_since_stage_change=days,
        new_level=new_level,
        update=update,
    )
    check_ladder(state, decision)
    return decision


def check_ladder(state: WorkflowState, decision: EscalationDecision) -> None:
    """Fail loudly if an escalation would break the level/stage pairing."""
    if decision.new_level != state.escalation_level + 1:
        raise InconsistentStateError(
            f"escalation from level {state.escalation_level} to {decision.new_level} skips a level",
            lead_id=state.lead_id,
        )
    expected = ESCALATION_LADDER.get(decision.new_level)
    actual = (decision.update.current_stage, decision.update.current_assignee_type)
    if expected is None or actual != expected:
        raise InconsistentStateError(
            f"level {decision.new_level} does not pair with {actual}",
            lead_id=state.lead_id,
        )


def escalation_record(
    state: WorkflowState,
    decision: EscalationDecision,
    *,
    system_sender: str,
    dealer_name: str | None = None,
    manager_id: str | None = None,
) -> CommunicationRecord:
    """Ledger entry for a reminder or escalation decided by ``evaluate``."""
    if not decision.is_escalation:
        return CommunicationRecord(
            lead_id=state.lead_id,
            type=CommunicationType.SYSTEM_REMINDER,
            title=messages.REMINDER_TITLE,
            body=messages.reminder_body(dealer_name, decision.days_since_stage_change),
            sender_type=SenderType.SYSTEM,
            sender_id=system_sender,
            recipient_id=state.current_assignee_id,
            related_workflow_state_id=state.id,
        )

    recipient = state.current_assignee_id
    cc: tuple[str, ...] = ()
    if decision.new_level == 2 and manager_id:
        cc = (manager_id,)
    elif decision.new_level == 3:
        recipient = state.psm_id
        cc = (state.current_assignee_id,)

    return CommunicationRecord(
        lead_id=state.lead_id,
        type=CommunicationType.SYSTEM_ESCALATION,
        title=messages.ESCALATION_TITLES[decision.new_level],
        body=messages.escalation_body(decision.new_level, decision.days_since_stage_change),
        sender_type=SenderType.SYSTEM,
        sender_id=system_sender,
        recipient_id=recipient,
        cc_ids=cc,
        related_workflow_state_id=state.id,
    )
