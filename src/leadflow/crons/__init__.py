"""Time-driven jobs: the APScheduler-based escalation sweep."""

from leadflow.crons.scheduler import (
    EscalationScheduler,
    validate_cron_expression,
)

__all__ = [
    "EscalationScheduler",
    "validate_cron_expression",
]
