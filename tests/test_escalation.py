"""Tests for the pure escalation evaluator and its ledger records."""

from __future__ import annotations

from datetime import timedelta

import pytest

from leadflow.config import EscalationPolicy
from leadflow.db.models import AssigneeType, CommunicationType, Stage
from leadflow.workflow.errors import InconsistentStateError
from leadflow.workflow.escalation import (
    EscalationAction,
    EscalationDecision,
    check_ladder,
    days_between,
    escalation_record,
    evaluate,
)
from leadflow.workflow.types import StateUpdate

from tests.helpers import T0, make_state

POLICY = EscalationPolicy()


def at(days: float):
    return T0 + timedelta(days=days)


# ─────────────────────────────────────────────────────────────────────────────
# Day counting
# ─────────────────────────────────────────────────────────────────────────────

class TestDaysBetween:
    def test_floors_partial_days(self):
        assert days_between(T0, T0 + timedelta(days=4, hours=23)) == 4

    def test_exact_day_boundary(self):
        assert days_between(T0, at(3)) == 3

    def test_negative_span_is_zero(self):
        assert days_between(at(2), T0) == 0


# ─────────────────────────────────────────────────────────────────────────────
# No-op cases
# ─────────────────────────────────────────────────────────────────────────────

class TestSkips:
    @pytest.mark.parametrize("stage", [Stage.DROPPED, Stage.CLOSED_LEAD])
    @pytest.mark.parametrize("days", [0, 3, 5, 30, 365])
    def test_terminal_leads_never_act(self, stage, days):
        state = make_state(current_stage=stage)
        assert evaluate(state, at(days), POLICY) is None

    def test_terminal_wins_over_bad_level(self):
        state = make_state(current_stage=Stage.DROPPED, escalation_level=9)
        assert evaluate(state, at(10), POLICY) is None

    @pytest.mark.parametrize("assignee", [AssigneeType.PSM, AssigneeType.SYSTEM])
    def test_non_rm_owner_is_skipped(self, assignee):
        state = make_state(current_assignee_type=assignee)
        assert evaluate(state, at(30), POLICY) is None

    def test_psm_review_pending_is_skipped(self):
        state = make_state(
            current_stage=Stage.PSM_REVIEW_PENDING,
            current_assignee_type=AssigneeType.RM,
            escalation_level=2,
        )
        assert evaluate(state, at(30), POLICY) is None

    def test_level_three_back_with_rm_stays_put(self):
        state = make_state(escalation_level=3)
        assert evaluate(state, at(30), POLICY) is None

    @pytest.mark.parametrize("days", [0, 1, 2])
    def test_quiet_period(self, days):
        assert evaluate(make_state(), at(days), POLICY) is None


# ─────────────────────────────────────────────────────────────────────────────
# Reminders
# ─────────────────────────────────────────────────────────────────────────────

class TestReminder:
    @pytest.mark.parametrize("days", [3, 4])
    def test_reminder_window(self, days):
        decision = evaluate(make_state(), at(days), POLICY)
        assert decision is not None
        assert decision.action is EscalationAction.REMINDER
        assert decision.new_level == 0
        assert decision.days_since_stage_change == days

    def test_reminder_only_moves_follow_up(self):
        now = at(4)
        decision = evaluate(make_state(), now, POLICY)
        assert decision.update.changes() == {
            "next_follow_up_at": now + timedelta(days=1),
            "last_reminder_at": now,
        }

    def test_one_reminder_per_stage_entry(self):
        state = make_state(last_reminder_at=at(3))
        assert evaluate(state, at(4), POLICY) is None

    def test_reminder_before_stage_change_does_not_count(self):
        state = make_state(last_stage_change_at=at(1), last_reminder_at=T0)
        decision = evaluate(state, at(4), POLICY)
        assert decision is not None and decision.action is EscalationAction.REMINDER

    def test_no_reminder_above_level_zero(self):
        state = make_state(current_stage=Stage.ESCALATION_1, escalation_level=1)
        assert evaluate(state, at(2), POLICY) is None


# ─────────────────────────────────────────────────────────────────────────────
# Escalations
# ─────────────────────────────────────────────────────────────────────────────

class TestEscalation:
    def test_level_zero_to_one_at_day_five(self):
        now = at(5)
        decision = evaluate(make_state(last_reminder_at=at(3)), now, POLICY)
        assert decision.action is EscalationAction.ESCALATION
        assert decision.new_level == 1
        changes = decision.update.changes()
        assert changes["current_stage"] is Stage.ESCALATION_1
        assert changes["escalation_level"] == 1
        assert changes["last_stage_change_at"] == now
        assert changes["next_follow_up_at"] == now + timedelta(days=1)
        assert "current_assignee_id" not in changes

    def test_level_one_to_two_after_three_days(self):
        state = make_state(current_stage=Stage.ESCALATION_1, escalation_level=1)
        assert evaluate(state, at(2), POLICY) is None
        decision = evaluate(state, at(3), POLICY)
        assert decision.new_level == 2
        assert decision.update.current_stage is Stage.ESCALATION_2

    def test_level_two_moves_lead_to_psm(self):
        state = make_state(current_stage=Stage.ESCALATION_2, escalation_level=2)
        assert evaluate(state, at(1), POLICY) is None
        decision = evaluate(state, at(2), POLICY)
        assert decision.new_level == 3
        assert decision.update.current_stage is Stage.PSM_REVIEW_PENDING
        assert decision.update.current_assignee_type is AssigneeType.PSM
        assert decision.update.current_assignee_id == "P1"

    def test_escalation_ignores_pending_reminder(self):
        decision = evaluate(make_state(), at(9), POLICY)
        assert decision.action is EscalationAction.ESCALATION
        assert decision.new_level == 1

    def test_custom_policy(self):
        policy = EscalationPolicy(
            reminder_after_days=1,
            escalation_level_1_days=2,
            escalation_level_2_days=1,
            escalation_to_psm_days=1,
        )
        assert evaluate(make_state(), at(1), policy).action is EscalationAction.REMINDER
        assert evaluate(make_state(), at(2), policy).new_level == 1

    @pytest.mark.parametrize("level", [-1, 4, 7])
    def test_level_out_of_range_fails_loudly(self, level):
        with pytest.raises(InconsistentStateError):
            evaluate(make_state(escalation_level=level), at(10), POLICY)


class TestCheckLadder:
    def test_skipping_a_level_is_rejected(self):
        bogus = EscalationDecision(
            action=EscalationAction.ESCALATION,
            days_since_stage_change=5,
            new_level=2,
            update=StateUpdate(current_stage=Stage.ESCALATION_2, current_assignee_type=AssigneeType.RM),
        )
        with pytest.raises(InconsistentStateError):
            check_ladder(make_state(), bogus)

    def test_wrong_stage_for_level_is_rejected(self):
        bogus = EscalationDecision(
            action=EscalationAction.ESCALATION,
            days_since_stage_change=5,
            new_level=1,
            update=StateUpdate(current_stage=Stage.ESCALATION_2, current_assignee_type=AssigneeType.RM),
        )
        with pytest.raises(InconsistentStateError):
            check_ladder(make_state(), bogus)


# ─────────────────────────────────────────────────────────────────────────────
# Ledger records
# ─────────────────────────────────────────────────────────────────────────────

class TestEscalationRecord:
    def test_reminder_record(self):
        state = make_state()
        decision = evaluate(state, at(4), POLICY)
        record = escalation_record(state, decision, system_sender="sys", dealer_name="Acme Motors")
        assert record.type is CommunicationType.SYSTEM_REMINDER
        assert record.title == "Follow-up Reminder"
        assert "Acme Motors" in record.body and "4 days" in record.body
        assert record.recipient_id == "R1"
        assert record.related_workflow_state_id == state.id

    def test_reminder_without_dealer_name(self):
        state = make_state()
        record = escalation_record(state, evaluate(state, at(3), POLICY), system_sender="sys")
        assert "Unknown Dealer" in record.body

    def test_level_one_title(self):
        state = make_state()
        record = escalation_record(state, evaluate(state, at(5), POLICY), system_sender="sys")
        assert record.type is CommunicationType.SYSTEM_ESCALATION
        assert record.title == "Lead Escalation - Level 1"
        assert record.cc_ids == ()

    def test_level_two_copies_manager(self):
        state = make_state(current_stage=Stage.ESCALATION_1, escalation_level=1)
        decision = evaluate(state, at(3), POLICY)
        record = escalation_record(state, decision, system_sender="sys", manager_id="M1")
        assert record.title == "Lead Escalation - Level 2"
        assert record.recipient_id == "R1"
        assert record.cc_ids == ("M1",)

    def test_level_three_goes_to_psm_and_copies_rm(self):
        state = make_state(current_stage=Stage.ESCALATION_2, escalation_level=2)
        decision = evaluate(state, at(2), POLICY)
        record = escalation_record(state, decision, system_sender="sys", manager_id="M1")
        assert record.title == "Lead Escalated to PSM"
        assert record.recipient_id == "P1"
        assert record.cc_ids == ("R1",)
