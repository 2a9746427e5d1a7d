"""Centralized configuration via Pydantic Settings.

All values loaded from environment variables prefixed with LEADFLOW_
(or a local .env file). Escalation cadence lives here so operators can
retune it without touching the transition rules.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LEADFLOW_", env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite+aiosqlite:///./leadflow.db"

    # ── Escalation thresholds (days since last stage change) ──────
    reminder_after_days: int = 3
    escalation_level_1_days: int = 5
    escalation_level_2_days: int = 3
    escalation_to_psm_days: int = 2

    # ── Follow-up cadence (days added to next_follow_up_at) ───────
    assignment_follow_up_days: int = 7
    reply_follow_up_days: int = 2
    reminder_follow_up_days: int = 1
    escalation_follow_up_days: int = 1

    # ── Sweep scheduling ──────────────────────────────────────────
    scheduler_enabled: bool = True
    sweep_cron: str = "0 1 * * *"
    sweep_interval_seconds: int = 0
    sweep_timezone: str = ""
    sweep_lead_timeout_s: float = 30.0

    # ── Identities ────────────────────────────────────────────────
    system_sender: str = "system@scfleadmgmt.com"
    unassigned_sentinel: str = "unassigned"

    # ── Reply classifier (keyword rules unless a model is set) ────
    classifier_model: str = ""
    classifier_api_key: str = ""
    classifier_api_base: str = ""
    classifier_timeout_s: float = 10.0

    # Application
    log_level: str = "INFO"
    env: str = "development"


settings = Settings()  # type: ignore[call-arg]


@dataclass(frozen=True)
class EscalationPolicy:
    """Thresholds and follow-up offsets used by the escalation evaluator.

    The reminder window is ``[reminder_after_days, escalation_level_1_days)``.
    Each later level counts from the previous escalation, because every
    escalation resets ``last_stage_change_at``.
    """

    reminder_after_days: int = 3
    escalation_level_1_days: int = 5
    escalation_level_2_days: int = 3
    escalation_to_psm_days: int = 2
    reminder_follow_up_days: int = 1
    escalation_follow_up_days: int = 1

    @classmethod
    def from_settings(cls, s: Settings) -> EscalationPolicy:
        return cls(
            reminder_after_days=s.reminder_after_days,
            escalation_level_1_days=s.escalation_level_1_days,
            escalation_level_2_days=s.escalation_level_2_days,
            escalation_to_psm_days=s.escalation_to_psm_days,
            reminder_follow_up_days=s.reminder_follow_up_days,
            escalation_follow_up_days=s.escalation_follow_up_days,
        )

    def problems(self) -> list[str]:
        """Return a list of human-readable problems; empty when valid."""
        issues: list[str] = []
        for name in (
            "reminder_after_days",
            "escalation_level_1_days",
            "escalation_level_2_days",
            "escalation_to_psm_days",
        ):
            if getattr(self, name) <= 0:
                issues.append(f"{name} must be positive")
        for name in ("reminder_follow_up_days", "escalation_follow_up_days"):
            if getattr(self, name) < 0:
                issues.append(f"{name} must not be negative")
        if self.reminder_after_days >= self.escalation_level_1_days:
            issues.append("reminder_after_days must be below escalation_level_1_days")
        return issues

    def to_dict(self) -> dict[str, int]:
        return {
            "reminder_after_days": self.reminder_after_days,
            "escalation_level_1_days": self.escalation_level_1_days,
            "escalation_level_2_days": self.escalation_level_2_days,
            "escalation_to_psm_days": self.escalation_to_psm_days,
            "reminder_follow_up_days": self.reminder_follow_up_days,
            "escalation_follow_up_days": self.escalation_follow_up_days,
        }


@dataclass(frozen=True)
class FollowUpCadence:
    """Follow-up offsets applied by the human-triggered transitions."""

    assignment_days: int = 7
    reply_days: int = 2

    @classmethod
    def from_settings(cls, s: Settings) -> FollowUpCadence:
        return cls(
            assignment_days=s.assignment_follow_up_days,
            reply_days=s.reply_follow_up_days,
        )
