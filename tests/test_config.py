"""Tests for settings loading and the escalation policy."""

from __future__ import annotations

import pytest

from leadflow.config import EscalationPolicy, FollowUpCadence, Settings


class TestSettings:
    def test_defaults(self, test_settings):
        assert test_settings.reminder_after_days == 3
        assert test_settings.escalation_level_1_days == 5
        assert test_settings.escalation_level_2_days == 3
        assert test_settings.escalation_to_psm_days == 2
        assert test_settings.sweep_cron == "0 1 * * *"
        assert test_settings.system_sender == "system@scfleadmgmt.com"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("LEADFLOW_ESCALATION_LEVEL_1_DAYS", "8")
        monkeypatch.setenv("LEADFLOW_SCHEDULER_ENABLED", "false")
        s = Settings(_env_file=None)
        assert s.escalation_level_1_days == 8
        assert s.scheduler_enabled is False


class TestEscalationPolicy:
    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("LEADFLOW_REMINDER_AFTER_DAYS", "2")
        policy = EscalationPolicy.from_settings(Settings(_env_file=None))
        assert policy.reminder_after_days == 2
        assert policy.escalation_level_1_days == 5

    def test_default_policy_is_valid(self):
        assert EscalationPolicy().problems() == []

    @pytest.mark.parametrize(
        "overrides",
        [
            {"escalation_level_2_days": 0},
            {"escalation_to_psm_days": -1},
            {"reminder_follow_up_days": -1},
            {"reminder_after_days": 5, "escalation_level_1_days": 5},
        ],
    )
    def test_invalid_policies(self, overrides):
        assert EscalationPolicy(**overrides).problems()

    def test_to_dict(self):
        d = EscalationPolicy().to_dict()
        assert d["escalation_to_psm_days"] == 2
        assert len(d) == 6


def test_follow_up_cadence_from_settings(monkeypatch):
    monkeypatch.setenv("LEADFLOW_REPLY_FOLLOW_UP_DAYS", "4")
    cadence = FollowUpCadence.from_settings(Settings(_env_file=None))
    assert cadence == FollowUpCadence(assignment_days=7, reply_days=4)
