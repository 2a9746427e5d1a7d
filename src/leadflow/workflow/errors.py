"""Error taxonomy for the lead workflow engine.

ValidationError      caller must fix the input; nothing was mutated
UnknownLeadError     a transition named a lead with no workflow
NotFoundError        a lookup found nothing
PersistenceError     the store or ledger write failed; the transaction was rolled back
InconsistentStateError  a programming error; never swallowed
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for every error raised by the engine."""

    def __init__(self, message: str, lead_id: str | None = None) -> None:
        super().__init__(message)
        self.lead_id = lead_id


class ValidationError(WorkflowError):
    pass


class UnknownLeadError(ValidationError):
    pass


class NotFoundError(WorkflowError):
    pass


class PersistenceError(WorkflowError):
    pass


class InconsistentStateError(WorkflowError):
    pass
