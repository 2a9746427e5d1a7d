"""Lead workflow & escalation engine."""

from leadflow.workflow.errors import (
    InconsistentStateError,
    NotFoundError,
    PersistenceError,
    UnknownLeadError,
    ValidationError,
    WorkflowError,
)
from leadflow.workflow.service import BulkCloseResult, WorkflowService
from leadflow.workflow.types import (
    AIResult,
    DecisionKind,
    ReplyDecision,
    SweepResult,
    WorkflowState,
)

__all__ = [
    "AIResult",
    "BulkCloseResult",
    "DecisionKind",
    "InconsistentStateError",
    "NotFoundError",
    "PersistenceError",
    "ReplyDecision",
    "SweepResult",
    "UnknownLeadError",
    "ValidationError",
    "WorkflowError",
    "WorkflowService",
    "WorkflowState",
]
