"""Stage transition rules.

``apply_intent`` is a pure function: (current state, intent, now) ->
(partial state update, ledger record). It never touches the database.
Every intent either produces exactly one record or raises
``ValidationError``; nothing is silently ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from leadflow.config import FollowUpCadence
from leadflow.db.models import AssigneeType, CommunicationType, SenderType, Stage
from leadflow.workflow import messages
from leadflow.workflow.errors import ValidationError
from leadflow.workflow.types import (
    AddNote,
    AssignLead,
    CloseLead,
    CommunicationRecord,
    DropLead,
    Intent,
    ManualStageChange,
    ReassignToRM,
    ReplyDecision,
    ResumeFromAdminReview,
    RMReply,
    SendBackToRM,
    StateUpdate,
    Transition,
    WorkflowState,
)

AI_DROP_REASON = "AI: Dealer Not Interested"
DEFAULT_DROP_REASON = "Dropped by PSM"

# Stages only the engine itself may enter.
SYSTEM_OWNED_STAGES = frozenset({
    Stage.ASSIGNMENT_EMAIL_PENDING,
    Stage.ESCALATION_1,
    Stage.ESCALATION_2,
    Stage.PSM_REVIEW_PENDING,
})

_RM_STAGES = frozenset({Stage.AWAITING_RM_REPLY, Stage.REASSIGNMENT_EMAIL_PENDING})
_PSM_STAGES = frozenset({Stage.PSM_ASSIGNED, Stage.PSM_AWAITING_ACTION})


@dataclass(frozen=True)
class TransitionRules:
    """Settings the rules need that are not part of the intent itself."""

    cadence: FollowUpCadence = FollowUpCadence()
    system_sender: str = "system@scfleadmgmt.com"
    unassigned_sentinel: str = "unassigned"


def apply_intent(
    state: WorkflowState,
    intent: Intent,
    now: datetime,
    rules: TransitionRules = TransitionRules(),
) -> Transition:
    if isinstance(intent, AddNote):
        return _add_note(state, intent, now)

    if state.is_terminal:
        raise ValidationError(
            f"lead is {state.current_stage.value}; no further transitions apply",
            lead_id=state.lead_id,
        )

    if isinstance(intent, AssignLead):
        return _assign(state, intent, now, rules)
    if isinstance(intent, RMReply):
        return _rm_reply(state, intent, now, rules)
    if isinstance(intent, ReassignToRM):
        return _reassign(state, intent, now, rules)
    if isinstance(intent, DropLead):
        return _drop(state, intent, now)
    if isinstance(intent, CloseLead):
        return _close(state, intent, now)
    if isinstance(intent, SendBackToRM):
        return _send_back(state, intent, now, rules)
    if isinstance(intent, ManualStageChange):
        return _manual_stage(state, intent, now, rules)
    if isinstance(intent, ResumeFromAdminReview):
        return _resume(state, intent, now, rules)
    raise ValidationError(f"unsupported transition: {type(intent).__name__}", lead_id=state.lead_id)


def _record(state: WorkflowState, **kwargs) -> CommunicationRecord:
    return CommunicationRecord(
        lead_id=state.lead_id,
        related_workflow_state_id=state.id,
        **kwargs,
    )


# ═══════════════════════════════════════════════════════════════════════════
# ASSIGNMENT + RM REPLIES
# ═══════════════════════════════════════════════════════════════════════════

def _assign(state: WorkflowState, intent: AssignLead, now: datetime, rules: TransitionRules) -> Transition:
    if state.current_stage is not Stage.ASSIGNMENT_EMAIL_PENDING:
        raise ValidationError("lead has already been assigned", lead_id=state.lead_id)
    update = StateUpdate(
        current_stage=Stage.AWAITING_RM_REPLY,
        last_stage_change_at=now,
        last_communication_at=now,
        next_follow_up_at=now + timedelta(days=rules.cadence.assignment_days),
    )
    record = _record(
        state,
        type=CommunicationType.ASSIGNMENT_EMAIL,
        title=intent.title,
        body=intent.body,
        sender_type=SenderType.SYSTEM,
        sender_id=rules.system_sender,
        recipient_id=state.rm_id,
    )
    return Transition(update, record)


def _rm_reply(state: WorkflowState, intent: RMReply, now: datetime, rules: TransitionRules) -> Transition:
    if not intent.reply_text.strip() and not intent.attachments:
        raise ValidationError("reply text is required", lead_id=state.lead_id)

    ai = intent.ai_result
    decision = ai.decision if ai else ReplyDecision.UNCLASSIFIED

    new_stage: Stage | None = None
    fields: dict = {"last_communication_at": now}
    if decision is ReplyDecision.NOT_INTERESTED:
        new_stage = Stage.DROPPED
        fields["dropped_reason"] = AI_DROP_REASON
    elif decision is ReplyDecision.NEEDS_ADMIN_REVIEW:
        new_stage = Stage.ADMIN_REVIEW_PENDING
        fields["current_assignee_type"] = AssigneeType.SYSTEM
        fields["current_assignee_id"] = rules.unassigned_sentinel
    elif decision is ReplyDecision.FOLLOW_UP:
        new_stage = Stage.AWAITING_RM_REPLY
        fields["current_assignee_type"] = AssigneeType.RM
        fields["current_assignee_id"] = state.rm_id
        fields["next_follow_up_at"] = now + timedelta(days=rules.cadence.reply_days)

    if new_stage is not None and new_stage is not state.current_stage:
        fields["current_stage"] = new_stage
        fields["last_stage_change_at"] = now

    record = _record(
        state,
        type=CommunicationType.RM_REPLY,
        title="RM Reply",
        body=intent.reply_text,
        sender_type=SenderType.RM,
        sender_id=intent.rm_id,
        recipient_id=rules.system_sender,
        ai_summary=ai.summary if ai else None,
        ai_decision=decision.value if ai else None,
        ai_tokens_consumed=ai.tokens_consumed if ai else None,
        attachments=intent.attachments,
    )
    return Transition(StateUpdate(**fields), record)


# ═══════════════════════════════════════════════════════════════════════════
# PSM DECISIONS
# ═══════════════════════════════════════════════════════════════════════════

def _reassign(state: WorkflowState, intent: ReassignToRM, now: datetime, rules: TransitionRules) -> Transition:
    rm_id = (intent.target_rm_id or "").strip() or state.rm_id
    update = StateUpdate(
        current_stage=Stage.REASSIGNMENT_EMAIL_PENDING,
        current_assignee_type=AssigneeType.RM,
        current_assignee_id=rm_id,
        rm_id=rm_id,
        last_stage_change_at=now,
        last_communication_at=now,
        next_follow_up_at=now + timedelta(days=rules.cadence.assignment_days),
    )
    record = _record(
        state,
        type=CommunicationType.PSM_REASSIGN,
        title="Lead Reassigned to RM",
        body=intent.note.strip() or f"Lead reassigned to {rm_id} by PSM.",
        sender_type=SenderType.PSM,
        sender_id=intent.psm_id,
        recipient_id=rm_id,
    )
    return Transition(update, record)


def _drop(state: WorkflowState, intent: DropLead, now: datetime) -> Transition:
    reason = intent.reason.strip() or DEFAULT_DROP_REASON
    update = StateUpdate(
        current_stage=Stage.DROPPED,
        dropped_reason=reason,
        last_stage_change_at=now,
        last_communication_at=now,
    )
    record = _record(
        state,
        type=CommunicationType.PSM_DROP,
        title="Lead Dropped",
        body=reason,
        sender_type=SenderType.PSM,
        sender_id=intent.psm_id,
        recipient_id=state.rm_id,
    )
    return Transition(update, record)


def _close(state: WorkflowState, intent: CloseLead, now: datetime) -> Transition:
    update = StateUpdate(
        current_stage=Stage.CLOSED_LEAD,
        last_stage_change_at=now,
        last_communication_at=now,
    )
    record = _record(
        state,
        type=CommunicationType.PSM_BULK_CLOSE if intent.bulk else CommunicationType.PSM_CLOSE,
        title="Lead Closed",
        body=intent.note.strip() or "Lead closed by PSM.",
        sender_type=SenderType.PSM,
        sender_id=intent.psm_id,
        recipient_id=state.rm_id,
    )
    return Transition(update, record)


def _send_back(state: WorkflowState, intent: SendBackToRM, now: datetime, rules: TransitionRules) -> Transition:
    if not intent.note.strip():
        raise ValidationError("a note is required to send a lead back to the RM", lead_id=state.lead_id)
    update = StateUpdate(
        current_stage=Stage.AWAITING_RM_REPLY,
        current_assignee_type=AssigneeType.RM,
        current_assignee_id=state.rm_id,
        last_stage_change_at=now,
        last_communication_at=now,
        next_follow_up_at=now + timedelta(days=rules.cadence.reply_days),
    )
    record = _record(
        state,
        type=CommunicationType.PSM_SEND_BACK,
        title=messages.SEND_BACK_TITLE,
        body=messages.send_back_body(intent.psm_id, intent.note),
        sender_type=SenderType.PSM,
        sender_id=intent.psm_id,
        recipient_id=state.rm_id,
    )
    return Transition(update, record)


# ═══════════════════════════════════════════════════════════════════════════
# HUMAN EDITS
# ═══════════════════════════════════════════════════════════════════════════

def _owner_for(state: WorkflowState, stage: Stage, rules: TransitionRules) -> dict:
    if stage in _RM_STAGES:
        return {"current_assignee_type": AssigneeType.RM, "current_assignee_id": state.rm_id}
    if stage in _PSM_STAGES:
        return {"current_assignee_type": AssigneeType.PSM, "current_assignee_id": state.psm_id}
    if stage is Stage.ADMIN_REVIEW_PENDING:
        return {
            "current_assignee_type": AssigneeType.SYSTEM,
            "current_assignee_id": rules.unassigned_sentinel,
        }
    return {}


def _manual_stage(
    state: WorkflowState, intent: ManualStageChange, now: datetime, rules: TransitionRules
) -> Transition:
    target = intent.target
    note = intent.note.strip()
    if target in SYSTEM_OWNED_STAGES:
        raise ValidationError(f"{target.value} can only be entered by the system", lead_id=state.lead_id)
    if target is state.current_stage:
        raise ValidationError(f"lead is already in {target.value}", lead_id=state.lead_id)
    if target is Stage.DROPPED and not note:
        raise ValidationError("a reason is required to drop a lead", lead_id=state.lead_id)

    fields = {
        "current_stage": target,
        "last_stage_change_at": now,
        "last_communication_at": now,
        **_owner_for(state, target, rules),
    }
    if target is Stage.DROPPED:
        fields["dropped_reason"] = note
    if target in _RM_STAGES:
        fields["next_follow_up_at"] = now + timedelta(days=rules.cadence.reply_days)

    record = _record(
        state,
        type=CommunicationType.STAGE_UPDATE,
        title=f"Stage updated to {target.value}",
        body=note or f"Stage changed from {state.current_stage.value} to {target.value}.",
        sender_type=SenderType.USER,
        sender_id=intent.actor_id,
        recipient_id=fields.get("current_assignee_id", state.current_assignee_id),
    )
    return Transition(StateUpdate(**fields), record)


def _resume(
    state: WorkflowState, intent: ResumeFromAdminReview, now: datetime, rules: TransitionRules
) -> Transition:
    if state.current_stage is not Stage.ADMIN_REVIEW_PENDING:
        raise ValidationError(
            f"lead is {state.current_stage.value}, not awaiting admin review",
            lead_id=state.lead_id,
        )
    assignee = (intent.assignee_id or "").strip()
    if intent.assign_to is AssigneeType.RM:
        assignee = assignee or state.rm_id
        update = StateUpdate(
            current_stage=Stage.AWAITING_RM_REPLY,
            current_assignee_type=AssigneeType.RM,
            current_assignee_id=assignee,
            rm_id=assignee,
            last_stage_change_at=now,
            last_communication_at=now,
            next_follow_up_at=now + timedelta(days=rules.cadence.assignment_days),
        )
        target = Stage.AWAITING_RM_REPLY
    elif intent.assign_to is AssigneeType.PSM:
        assignee = assignee or state.psm_id
        update = StateUpdate(
            current_stage=Stage.PSM_ASSIGNED,
            current_assignee_type=AssigneeType.PSM,
            current_assignee_id=assignee,
            last_stage_change_at=now,
            last_communication_at=now,
        )
        target = Stage.PSM_ASSIGNED
    else:
        raise ValidationError("an admin review can only be resumed to an RM or a PSM", lead_id=state.lead_id)

    record = _record(
        state,
        type=CommunicationType.STAGE_UPDATE,
        title="Admin Review Completed",
        body=intent.note.strip() or f"Lead returned to {intent.assign_to.value} {assignee}.",
        sender_type=SenderType.USER,
        sender_id=intent.reviewer_id,
        recipient_id=assignee,
    )
    return Transition(update, record)


def _add_note(state: WorkflowState, intent: AddNote, now: datetime) -> Transition:
    text = intent.text.strip()
    if not text:
        raise ValidationError("note text is required", lead_id=state.lead_id)
    record = _record(
        state,
        type=CommunicationType.NOTE,
        title="Note",
        body=text,
        sender_type=intent.sender_type,
        sender_id=intent.author_id,
        recipient_id=state.current_assignee_id,
    )
    return Transition(StateUpdate(last_communication_at=now), record)
