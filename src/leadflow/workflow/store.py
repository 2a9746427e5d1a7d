"""Workflow state store.

Thin repository over ``lead_workflow_states``. It works inside the caller's
session and never commits: the service decides the transaction boundary so
a state update and its ledger record land together.
"""

from __future__ import annotations

import uuid

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.db.models import (
    TERMINAL_STAGES,
    AssigneeType,
    LeadWorkflowState,
    Stage,
)
from leadflow.workflow.clock import Clock
from leadflow.workflow.errors import NotFoundError
from leadflow.workflow.types import StateUpdate, WorkflowState


class WorkflowStateStore:
    def __init__(self, session: AsyncSession, clock: Clock) -> None:
        self._session = session
        self._clock = clock

    async def create(self, lead_id: str, rm_id: str, psm_id: str) -> WorkflowState:
        """Insert the initial state: AssignmentEmailPending, level 0, all timestamps now."""
        now = self._clock.now()
        row = LeadWorkflowState(
            id=uuid.uuid4(),
            lead_id=lead_id,
            current_stage=Stage.ASSIGNMENT_EMAIL_PENDING,
            current_assignee_type=AssigneeType.RM,
            current_assignee_id=rm_id,
            rm_id=rm_id,
            psm_id=psm_id,
            last_stage_change_at=now,
            last_communication_at=now,
            next_follow_up_at=now,
            escalation_level=0,
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        return WorkflowState.from_row(row)

    async def get(self, lead_id: str) -> WorkflowState | None:
        result = await self._session.execute(
            select(LeadWorkflowState)
            .where(LeadWorkflowState.lead_id == lead_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return WorkflowState.from_row(row) if row else None

    async def get_by_id(self, state_id: uuid.UUID) -> WorkflowState | None:
        row = await self._session.get(LeadWorkflowState, state_id, populate_existing=True)
        return WorkflowState.from_row(row) if row else None

    async def update(self, state_id: uuid.UUID, changes: StateUpdate) -> None:
        """Apply a partial update. Always stamps ``updated_at``."""
        values = changes.changes()
        values["updated_at"] = self._clock.now()
        result = await self._session.execute(
            update(LeadWorkflowState)
            .where(LeadWorkflowState.id == state_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"workflow state {state_id} not found")

    async def list_active_lead_ids(self) -> list[str]:
        """Lead ids of every non-terminal workflow, oldest stage change first."""
        result = await self._session.execute(
            select(LeadWorkflowState.lead_id)
            .where(LeadWorkflowState.current_stage.not_in(tuple(TERMINAL_STAGES)))
            .order_by(LeadWorkflowState.last_stage_change_at)
        )
        return list(result.scalars().all())

    async def count_by_stage(self) -> dict[Stage, int]:
        result = await self._session.execute(
            select(LeadWorkflowState.current_stage, func.count())
            .group_by(LeadWorkflowState.current_stage)
        )
        return {Stage(stage): count for stage, count in result.all()}
