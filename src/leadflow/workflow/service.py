"""Workflow service: the engine's public operations.

Every mutating operation follows the same shape:

1. take the lead's lock (``LeadLocks``)
2. open one database transaction
3. re-read the state, run the pure transition/escalation rule
4. write the state update and its ledger record, commit

A failure anywhere in 3-4 rolls both writes back and surfaces as
``PersistenceError`` (database) or ``ValidationError`` (bad input).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadflow.config import EscalationPolicy, FollowUpCadence, Settings, settings as default_settings
from leadflow.db.models import AssigneeType, SenderType, Stage
from leadflow.observability.metrics import MetricsCollector, get_metrics
from leadflow.workflow import messages
from leadflow.workflow.classifier import ReplyClassifier
from leadflow.workflow.clock import Clock, SystemClock
from leadflow.workflow.directory import LeadDirectory, LeadProfile
from leadflow.workflow.errors import (
    InconsistentStateError,
    NotFoundError,
    PersistenceError,
    UnknownLeadError,
    ValidationError,
)
from leadflow.workflow.escalation import EscalationAction, escalation_record, evaluate
from leadflow.workflow.flags import Flag, flag_for, resolve_stage
from leadflow.workflow.ledger import CommunicationLedger
from leadflow.workflow.locks import LeadLocks
from leadflow.workflow.store import WorkflowStateStore
from leadflow.workflow.transitions import TransitionRules, apply_intent
from leadflow.workflow.types import (
    AddNote,
    AIResult,
    AssignLead,
    Attachment,
    CloseLead,
    CommunicationRecord,
    DecisionKind,
    Intent,
    ManualStageChange,
    ResumeFromAdminReview,
    RMReply,
    SweepResult,
    WorkflowState,
    decision_intent,
    require_id,
)

logger = structlog.get_logger()


@dataclass
class BulkCloseResult:
    closed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"closed": self.closed, "skipped": self.skipped, "errors": self.errors}


class WorkflowService:
    """Facade over the state store, ledger, transition rules and evaluator."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock | None = None,
        policy: EscalationPolicy | None = None,
        cadence: FollowUpCadence | None = None,
        directory: LeadDirectory | None = None,
        classifier: ReplyClassifier | None = None,
        locks: LeadLocks | None = None,
        metrics: MetricsCollector | None = None,
        config: Settings | None = None,
    ) -> None:
        cfg = config or default_settings
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._policy = policy or EscalationPolicy.from_settings(cfg)
        self._validate_policy(self._policy)
        self._rules = TransitionRules(
            cadence=cadence or FollowUpCadence.from_settings(cfg),
            system_sender=cfg.system_sender,
            unassigned_sentinel=cfg.unassigned_sentinel,
        )
        self._directory = directory
        self._classifier = classifier
        self._locks = locks or LeadLocks()
        self._metrics = metrics or get_metrics()
        self._classifier_timeout_s = cfg.classifier_timeout_s
        self.lead_timeout_s = cfg.sweep_lead_timeout_s

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def policy(self) -> EscalationPolicy:
        return self._policy

    @policy.setter
    def policy(self, value: EscalationPolicy) -> None:
        self._validate_policy(value)
        self._policy = value
        logger.info("escalation_policy_updated", **value.to_dict())

    @staticmethod
    def _validate_policy(policy: EscalationPolicy) -> None:
        problems = policy.problems()
        if problems:
            raise ValidationError("; ".join(problems))

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def locks(self) -> LeadLocks:
        return self._locks

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    # ═══════════════════════════════════════════════════════════════════════
    # PLUMBING
    # ═══════════════════════════════════════════════════════════════════════

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[tuple[WorkflowStateStore, CommunicationLedger]]:
        """One session, one transaction. Commits on exit, rolls back on error."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield (
                        WorkflowStateStore(session, self._clock),
                        CommunicationLedger(session, self._clock),
                    )
        except SQLAlchemyError as exc:
            logger.error("workflow_persistence_failed", error=str(exc))
            raise PersistenceError(f"database write failed: {exc}") from exc

    async def _apply(self, lead_id: str, intent: Intent, kind: str) -> tuple[WorkflowState, CommunicationRecord]:
        """Run one transition under the lead's lock, atomically."""
        async with self._locks.hold(lead_id):
            async with self._transaction() as (store, ledger):
                state = await store.get(lead_id)
                if state is None:
                    raise UnknownLeadError(f"no workflow for lead {lead_id}", lead_id=lead_id)
                transition = apply_intent(state, intent, self._clock.now(), self._rules)
                await store.update(state.id, transition.update)
                record = await ledger.append(transition.record)
                new_state = await store.get_by_id(state.id)
        await self._metrics.transition(kind)
        if new_state is None:
            raise InconsistentStateError("workflow state vanished mid-transaction", lead_id=lead_id)
        return new_state, record

    async def _profile(self, lead_id: str) -> LeadProfile | None:
        if self._directory is None:
            return None
        return await self._directory.get_lead(lead_id)

    # ═══════════════════════════════════════════════════════════════════════
    # CREATE / READ
    # ═══════════════════════════════════════════════════════════════════════

    async def create_workflow(self, lead_id: str, rm_id: str, psm_id: str) -> WorkflowState:
        """Create the lead's workflow and send the assignment email.

        The state is inserted in AssignmentEmailPending and moved to
        AwaitingRMReply in the same transaction as the assignment record.
        """
        lead_id = require_id(lead_id, "lead_id")
        rm_id = require_id(rm_id, "rm_id", lead_id)
        psm_id = require_id(psm_id, "psm_id", lead_id)

        profile: LeadProfile | None = None
        if self._directory is not None:
            profile = await self._directory.get_lead(lead_id)
            if profile is None:
                raise UnknownLeadError(f"lead {lead_id} is not in the lead directory", lead_id=lead_id)

        async with self._locks.hold(lead_id):
            async with self._transaction() as (store, ledger):
                if await store.get(lead_id) is not None:
                    raise ValidationError(f"workflow already exists for lead {lead_id}", lead_id=lead_id)
                state = await store.create(lead_id, rm_id, psm_id)
                now = self._clock.now()
                intent = AssignLead(
                    rm_id=rm_id,
                    title=messages.assignment_title(profile),
                    body=messages.assignment_email(profile, lead_id, rm_id, now),
                )
                transition = apply_intent(state, intent, now, self._rules)
                await store.update(state.id, transition.update)
                await ledger.append(transition.record)
                created = await store.get_by_id(state.id)

        await self._metrics.transition("assign")
        logger.info(
            "workflow_created",
            lead_id=lead_id,
            rm_id=rm_id,
            psm_id=psm_id,
        )
        if created is None:
            raise InconsistentStateError("workflow state vanished mid-transaction", lead_id=lead_id)
        return created

    async def get_workflow(self, lead_id: str) -> WorkflowState:
        async with self._transaction() as (store, _):
            state = await store.get(lead_id)
        if state is None:
            raise NotFoundError(f"no workflow for lead {lead_id}", lead_id=lead_id)
        return state

    async def list_communications(self, lead_id: str) -> list[CommunicationRecord]:
        """All ledger entries for a lead, oldest first."""
        async with self._transaction() as (store, ledger):
            if await store.get(lead_id) is None:
                raise NotFoundError(f"no workflow for lead {lead_id}", lead_id=lead_id)
            return await ledger.list_by_lead(lead_id)

    async def list_inbox(self, identity: str, limit: int = 200) -> list[CommunicationRecord]:
        """Records where ``identity`` is recipient, CC or sender. Newest first."""
        identity = require_id(identity, "identity")
        async with self._transaction() as (_, ledger):
            return await ledger.list_for_identity(identity, limit=limit)

    async def flag_summary(self) -> dict[str, int]:
        async with self._transaction() as (store, _):
            by_stage = await store.count_by_stage()
        summary = {flag.value: 0 for flag in Flag}
        for stage, count in by_stage.items():
            summary[flag_for(stage).value] += count
        return summary

    # ═══════════════════════════════════════════════════════════════════════
    # HUMAN-TRIGGERED TRANSITIONS
    # ═══════════════════════════════════════════════════════════════════════

    async def record_rm_reply(
        self,
        lead_id: str,
        rm_id: str,
        reply_text: str,
        ai_result: AIResult | None = None,
        attachments: Iterable[Attachment] = (),
    ) -> CommunicationRecord:
        lead_id = require_id(lead_id, "lead_id")
        rm_id = require_id(rm_id, "rm_id", lead_id)

        if ai_result is None and self._classifier is not None and reply_text.strip():
            ai_result = await self._classify(lead_id, reply_text)

        intent = RMReply(
            rm_id=rm_id,
            reply_text=reply_text,
            ai_result=ai_result,
            attachments=tuple(attachments),
        )
        state, record = await self._apply(lead_id, intent, "rm_reply")
        logger.info(
            "rm_reply_recorded",
            lead_id=lead_id,
            decision=record.ai_decision,
            stage=state.current_stage.value,
        )
        return record

    async def _classify(self, lead_id: str, reply_text: str) -> AIResult | None:
        try:
            return await asyncio.wait_for(
                self._classifier.classify(lead_id, reply_text),
                timeout=self._classifier_timeout_s,
            )
        except Exception as exc:
            logger.warning(
                "reply_classifier_failed",
                lead_id=lead_id,
                error=str(exc) or type(exc).__name__,
            )
            return None

    async def record_psm_decision(
        self,
        lead_id: str,
        psm_id: str,
        decision: DecisionKind | str,
        note: str = "",
        target_rm_id: str | None = None,
    ) -> CommunicationRecord:
        lead_id = require_id(lead_id, "lead_id")
        psm_id = require_id(psm_id, "psm_id", lead_id)
        try:
            kind = DecisionKind(decision)
        except ValueError as exc:
            raise ValidationError(f"unknown PSM decision: {decision!r}", lead_id=lead_id) from exc

        intent = decision_intent(kind, psm_id, note or "", target_rm_id)
        state, record = await self._apply(lead_id, intent, f"psm_{kind.value}")
        logger.info(
            "psm_decision_recorded",
            lead_id=lead_id,
            decision=kind.value,
            stage=state.current_stage.value,
        )
        return record

    async def update_stage(
        self,
        lead_id: str,
        actor_id: str,
        target: Stage | Flag | str,
        note: str = "",
    ) -> WorkflowState:
        """Manual stage change from the edit-lead flow. ``target`` may be a flag label."""
        lead_id = require_id(lead_id, "lead_id")
        actor_id = require_id(actor_id, "actor_id", lead_id)
        stage = resolve_stage(target)
        state, _ = await self._apply(
            lead_id, ManualStageChange(actor_id=actor_id, target=stage, note=note or ""), "stage_update"
        )
        logger.info("workflow_stage_updated", lead_id=lead_id, actor_id=actor_id, stage=stage.value)
        return state

    async def add_note(
        self,
        lead_id: str,
        author_id: str,
        text: str,
        sender_type: SenderType = SenderType.USER,
    ) -> CommunicationRecord:
        lead_id = require_id(lead_id, "lead_id")
        author_id = require_id(author_id, "author_id", lead_id)
        try:
            sender = SenderType(sender_type)
        except ValueError as exc:
            raise ValidationError(f"unknown sender type: {sender_type!r}", lead_id=lead_id) from exc
        _, record = await self._apply(
            lead_id, AddNote(author_id=author_id, sender_type=sender, text=text), "note"
        )
        return record

    async def resume_from_admin_review(
        self,
        lead_id: str,
        reviewer_id: str,
        assign_to: AssigneeType | str,
        assignee_id: str | None = None,
        note: str = "",
    ) -> WorkflowState:
        lead_id = require_id(lead_id, "lead_id")
        reviewer_id = require_id(reviewer_id, "reviewer_id", lead_id)
        try:
            target = AssigneeType(assign_to)
        except ValueError as exc:
            raise ValidationError(f"unknown assignee type: {assign_to!r}", lead_id=lead_id) from exc
        state, _ = await self._apply(
            lead_id,
            ResumeFromAdminReview(
                reviewer_id=reviewer_id,
                assign_to=target,
                assignee_id=assignee_id,
                note=note or "",
            ),
            "admin_resume",
        )
        logger.info(
            "admin_review_resumed",
            lead_id=lead_id,
            assignee_type=state.current_assignee_type.value,
            assignee_id=state.current_assignee_id,
        )
        return state

    async def close_leads(self, lead_ids: Iterable[str], psm_id: str, note: str = "") -> BulkCloseResult:
        """Close many leads; each one under its own lock and transaction."""
        psm_id = require_id(psm_id, "psm_id")
        result = BulkCloseResult()
        for raw in dict.fromkeys(lead_ids):
            lead_id = (raw or "").strip()
            if not lead_id:
                continue
            try:
                await self._apply(lead_id, CloseLead(psm_id=psm_id, note=note or "", bulk=True), "psm_bulk_close")
            except ValidationError:
                result.skipped.append(lead_id)
            except PersistenceError:
                result.errors.append(lead_id)
            else:
                result.closed.append(lead_id)
        logger.info(
            "leads_bulk_closed",
            psm_id=psm_id,
            closed=len(result.closed),
            skipped=len(result.skipped),
            errors=len(result.errors),
        )
        return result

    # ═══════════════════════════════════════════════════════════════════════
    # ESCALATION SWEEP
    # ═══════════════════════════════════════════════════════════════════════

    async def run_escalation_sweep(
        self,
        stop_event: asyncio.Event | None = None,
        lead_timeout_s: float | None = None,
    ) -> SweepResult:
        """Evaluate every active lead once and apply due reminders/escalations.

        A failure on one lead is logged and counted; the sweep moves on.
        ``InconsistentStateError`` is the exception: it propagates.
        ``stop_event`` is checked between leads, never mid-write.
        """
        timeout = lead_timeout_s if lead_timeout_s is not None else self.lead_timeout_s
        result = SweepResult()
        t0 = time.monotonic()
        await self._metrics.sweep_started()

        async with self._transaction() as (store, _):
            lead_ids = await store.list_active_lead_ids()
        logger.info("escalation_sweep_started", active_leads=len(lead_ids))

        for lead_id in lead_ids:
            if stop_event is not None and stop_event.is_set():
                result.stopped = True
                logger.warning(
                    "escalation_sweep_stopped",
                    processed=result.processed,
                    remaining=len(lead_ids) - result.processed,
                )
                break

            result.processed += 1
            try:
                async with self._metrics.timer("lead_sweep_latency_ms"):
                    action = await asyncio.wait_for(self._sweep_lead(lead_id), timeout=timeout)
            except InconsistentStateError:
                raise
            except asyncio.TimeoutError:
                result.errors += 1
                result.failed_leads.append(lead_id)
                await self._metrics.sweep_error()
                logger.error("escalation_sweep_lead_timeout", lead_id=lead_id, timeout_s=timeout)
            except Exception as exc:
                result.errors += 1
                result.failed_leads.append(lead_id)
                await self._metrics.sweep_error()
                logger.error(
                    "escalation_sweep_lead_failed",
                    lead_id=lead_id,
                    error=str(exc),
                    exc_info=True,
                )
            else:
                if action is EscalationAction.REMINDER:
                    result.reminded += 1
                elif action is EscalationAction.ESCALATION:
                    result.escalated += 1
                await self._metrics.lead_swept(action.value if action else None)

        elapsed_ms = (time.monotonic() - t0) * 1000
        await self._metrics.record("sweep_latency_ms", elapsed_ms)
        logger.info(
            "escalation_sweep_completed",
            elapsed_ms=round(elapsed_ms, 1),
            **result.to_dict(),
        )
        return result

    async def _sweep_lead(self, lead_id: str) -> EscalationAction | None:
        async with self._locks.hold(lead_id):
            async with self._transaction() as (store, ledger):
                state = await store.get(lead_id)
                if state is None or state.is_terminal:
                    return None
                decision = evaluate(state, self._clock.now(), self._policy)
                if decision is None:
                    return None

                dealer_name: str | None = None
                manager_id: str | None = None
                if decision.action is EscalationAction.REMINDER:
                    profile = await self._profile(lead_id)
                    dealer_name = profile.dealer_name if profile else None
                elif decision.new_level == 2 and self._directory is not None:
                    manager_id = await self._directory.manager_of(state.current_assignee_id)

                record = escalation_record(
                    state,
                    decision,
                    system_sender=self._rules.system_sender,
                    dealer_name=dealer_name,
                    manager_id=manager_id,
                )
                await store.update(state.id, decision.update)
                await ledger.append(record)

        if decision.is_escalation:
            await self._metrics.lead_escalated(decision.new_level)
            logger.info(
                "lead_escalated",
                lead_id=lead_id,
                level=decision.new_level,
                stage=decision.update.current_stage.value,
                days=decision.days_since_stage_change,
            )
        else:
            logger.info("lead_reminder_sent", lead_id=lead_id, days=decision.days_since_stage_change)
        return decision.action
