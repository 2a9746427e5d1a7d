"""Flag projection: internal stage -> human-facing status label.

Flags are what the lead grid, dashboards and reports show. The reverse
lookup maps a flag picked in the edit-lead form back to a canonical stage.
"""

from __future__ import annotations

from enum import Enum

from leadflow.db.models import Stage
from leadflow.workflow.errors import ValidationError


class Flag(str, Enum):
    WITH_RM = "With RM"
    ESCALATION_1 = "Escalation 1"
    ESCALATION_2 = "Escalation 2"
    WITH_PSM = "With PSM"
    PROGRAM_REVIEW = "Program Review"
    DROPPED = "Dropped"
    CLOSED = "Closed"


STAGE_TO_FLAG: dict[Stage, Flag] = {
    Stage.ASSIGNMENT_EMAIL_PENDING: Flag.WITH_RM,
    Stage.AWAITING_RM_REPLY: Flag.WITH_RM,
    Stage.REASSIGNMENT_EMAIL_PENDING: Flag.WITH_RM,
    Stage.ESCALATION_1: Flag.ESCALATION_1,
    Stage.ESCALATION_2: Flag.ESCALATION_2,
    Stage.PSM_REVIEW_PENDING: Flag.WITH_PSM,
    Stage.PSM_ASSIGNED: Flag.WITH_PSM,
    Stage.PSM_AWAITING_ACTION: Flag.WITH_PSM,
    Stage.ADMIN_REVIEW_PENDING: Flag.PROGRAM_REVIEW,
    Stage.DROPPED: Flag.DROPPED,
    Stage.CLOSED_LEAD: Flag.CLOSED,
}

# Canonical stage for each flag when a human sets the flag directly.
FLAG_TO_STAGE: dict[Flag, Stage] = {
    Flag.WITH_RM: Stage.AWAITING_RM_REPLY,
    Flag.ESCALATION_1: Stage.ESCALATION_1,
    Flag.ESCALATION_2: Stage.ESCALATION_2,
    Flag.WITH_PSM: Stage.PSM_ASSIGNED,
    Flag.PROGRAM_REVIEW: Stage.ADMIN_REVIEW_PENDING,
    Flag.DROPPED: Stage.DROPPED,
    Flag.CLOSED: Stage.CLOSED_LEAD,
}


def flag_for(stage: Stage) -> Flag:
    return STAGE_TO_FLAG[stage]


def resolve_stage(target: Stage | Flag | str) -> Stage:
    """Accept a Stage, a Flag, or either one's string value."""
    if isinstance(target, Stage):
        return target
    if isinstance(target, Flag):
        return FLAG_TO_STAGE[target]
    text = (target or "").strip()
    for stage in Stage:
        if stage.value == text:
            return stage
    for flag in Flag:
        if flag.value.lower() == text.lower():
            return FLAG_TO_STAGE[flag]
    raise ValidationError(f"unknown stage or flag: {target!r}")
