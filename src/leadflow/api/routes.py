"""HTTP endpoints for collaborators (lead grid UI, batch import, reports).

Thin layer: parse the body, call ``WorkflowService``, serialize the result.
Engine errors are mapped to status codes by ``register_exception_handlers``.
"""

from __future__ import annotations

import dataclasses
from typing import Any

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from leadflow.crons.scheduler import EscalationScheduler
from leadflow.workflow.errors import (
    NotFoundError,
    PersistenceError,
    UnknownLeadError,
    ValidationError,
    WorkflowError,
)
from leadflow.workflow.service import WorkflowService
from leadflow.workflow.types import AIResult, Attachment, ReplyDecision

logger = structlog.get_logger()

router = APIRouter(tags=["workflow"])


# ═══════════════════════════════════════════════════════════════════════════
# REQUEST MODELS
# ═══════════════════════════════════════════════════════════════════════════

class CreateWorkflowRequest(BaseModel):
    lead_id: str
    rm_id: str
    psm_id: str


class AttachmentModel(BaseModel):
    name: str
    size: str = ""
    type: str = ""
    url: str | None = None


class RMReplyRequest(BaseModel):
    rm_id: str
    reply_text: str
    ai_decision: str | None = None
    ai_summary: str = ""
    ai_tokens_consumed: int = 0
    attachments: list[AttachmentModel] = Field(default_factory=list)


class PSMDecisionRequest(BaseModel):
    psm_id: str
    decision: str
    note: str = ""
    target_rm_id: str | None = None


class StageUpdateRequest(BaseModel):
    actor_id: str
    target: str
    note: str = ""


class NoteRequest(BaseModel):
    author_id: str
    text: str
    sender_type: str = "User"


class ResumeRequest(BaseModel):
    reviewer_id: str
    assign_to: str
    assignee_id: str | None = None
    note: str = ""


class BulkCloseRequest(BaseModel):
    lead_ids: list[str]
    psm_id: str
    note: str = ""


class EscalationConfigRequest(BaseModel):
    reminder_after_days: int | None = None
    escalation_level_1_days: int | None = None
    escalation_level_2_days: int | None = None
    escalation_to_psm_days: int | None = None
    reminder_follow_up_days: int | None = None
    escalation_follow_up_days: int | None = None
    sweep_cron: str | None = None
    sweep_interval_seconds: int | None = None


_POLICY_FIELDS = (
    "reminder_after_days",
    "escalation_level_1_days",
    "escalation_level_2_days",
    "escalation_to_psm_days",
    "reminder_follow_up_days",
    "escalation_follow_up_days",
)


# ═══════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def _service(request: Request) -> WorkflowService:
    return request.app.state.service


def _scheduler(request: Request) -> EscalationScheduler | None:
    return getattr(request.app.state, "scheduler", None)


def _status_for(exc: WorkflowError) -> int:
    if isinstance(exc, (UnknownLeadError, NotFoundError)):
        return 404
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, PersistenceError):
        return 503
    return 500


async def _workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error(
            "workflow_request_failed",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
            lead_id=exc.lead_id,
        )
    return JSONResponse(
        status_code=status,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkflowError, _workflow_error_handler)


# ═══════════════════════════════════════════════════════════════════════════
# WORKFLOWS
# ═══════════════════════════════════════════════════════════════════════════

@router.post("/workflows", status_code=201)
async def create_workflow(req: CreateWorkflowRequest, request: Request) -> dict[str, Any]:
    state = await _service(request).create_workflow(req.lead_id, req.rm_id, req.psm_id)
    return state.to_dict()


@router.post("/workflows/bulk-close")
async def bulk_close(req: BulkCloseRequest, request: Request) -> dict[str, Any]:
    result = await _service(request).close_leads(req.lead_ids, req.psm_id, req.note)
    return result.to_dict()


@router.get("/workflows/{lead_id}")
async def get_workflow(lead_id: str, request: Request) -> dict[str, Any]:
    state = await _service(request).get_workflow(lead_id)
    return state.to_dict()


@router.post("/workflows/{lead_id}/replies", status_code=201)
async def record_reply(lead_id: str, req: RMReplyRequest, request: Request) -> dict[str, Any]:
    ai_result = None
    if req.ai_decision is not None:
        ai_result = AIResult(
            summary=req.ai_summary,
            decision=ReplyDecision.from_label(req.ai_decision),
            tokens_consumed=req.ai_tokens_consumed,
        )
    record = await _service(request).record_rm_reply(
        lead_id,
        req.rm_id,
        req.reply_text,
        ai_result=ai_result,
        attachments=[Attachment(**a.model_dump()) for a in req.attachments],
    )
    return record.to_dict()


@router.post("/workflows/{lead_id}/decisions", status_code=201)
async def record_decision(lead_id: str, req: PSMDecisionRequest, request: Request) -> dict[str, Any]:
    record = await _service(request).record_psm_decision(
        lead_id, req.psm_id, req.decision, req.note, target_rm_id=req.target_rm_id
    )
    return record.to_dict()


@router.post("/workflows/{lead_id}/stage")
async def update_stage(lead_id: str, req: StageUpdateRequest, request: Request) -> dict[str, Any]:
    state = await _service(request).update_stage(lead_id, req.actor_id, req.target, req.note)
    return state.to_dict()


@router.post("/workflows/{lead_id}/notes", status_code=201)
async def add_note(lead_id: str, req: NoteRequest, request: Request) -> dict[str, Any]:
    record = await _service(request).add_note(lead_id, req.author_id, req.text, req.sender_type)
    return record.to_dict()


@router.post("/workflows/{lead_id}/resume")
async def resume_admin_review(lead_id: str, req: ResumeRequest, request: Request) -> dict[str, Any]:
    state = await _service(request).resume_from_admin_review(
        lead_id, req.reviewer_id, req.assign_to, req.assignee_id, req.note
    )
    return state.to_dict()


@router.get("/workflows/{lead_id}/communications")
async def list_communications(lead_id: str, request: Request) -> list[dict[str, Any]]:
    """Ledger for one lead, newest first (display order)."""
    records = await _service(request).list_communications(lead_id)
    return [r.to_dict() for r in reversed(records)]


@router.get("/inbox/{identity}")
async def inbox(identity: str, request: Request, limit: int = 200) -> list[dict[str, Any]]:
    records = await _service(request).list_inbox(identity, limit=limit)
    return [r.to_dict() for r in records]


@router.get("/summary/flags")
async def flag_summary(request: Request) -> dict[str, int]:
    return await _service(request).flag_summary()


# ═══════════════════════════════════════════════════════════════════════════
# ESCALATION CONTROL
# ═══════════════════════════════════════════════════════════════════════════

@router.post("/escalations/run")
async def run_escalations(request: Request) -> dict[str, Any]:
    """Manual "run now". Goes through the scheduler so it never overlaps a scheduled sweep."""
    scheduler = _scheduler(request)
    if scheduler is not None:
        result = await scheduler.trigger_now()
    else:
        result = await _service(request).run_escalation_sweep()
    return result.to_dict()


def _config_snapshot(request: Request) -> dict[str, Any]:
    data: dict[str, Any] = _service(request).policy.to_dict()
    scheduler = _scheduler(request)
    if scheduler is not None:
        data["sweep_cron"] = scheduler.cron
        data["sweep_interval_seconds"] = scheduler.interval_seconds
    return data


@router.get("/config/escalation")
async def get_escalation_config(request: Request) -> dict[str, Any]:
    return _config_snapshot(request)


@router.put("/config/escalation")
async def update_escalation_config(req: EscalationConfigRequest, request: Request) -> dict[str, Any]:
    service = _service(request)
    body = req.model_dump(exclude_none=True)

    policy_changes = {k: v for k, v in body.items() if k in _POLICY_FIELDS}
    if policy_changes:
        service.policy = dataclasses.replace(service.policy, **policy_changes)

    if "sweep_cron" in body or "sweep_interval_seconds" in body:
        scheduler = _scheduler(request)
        if scheduler is None:
            raise ValidationError("no sweep scheduler is configured")
        scheduler.reschedule(
            cron=body.get("sweep_cron"),
            interval_seconds=body.get("sweep_interval_seconds"),
        )
    return _config_snapshot(request)


# ═══════════════════════════════════════════════════════════════════════════
# OPERATIONS
# ═══════════════════════════════════════════════════════════════════════════

@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Health check endpoint."""
    data: dict[str, Any] = {"status": "ok", "service": "leadflow"}
    scheduler = _scheduler(request)
    if scheduler is not None:
        data["scheduler"] = scheduler.status()
    return data


@router.get("/metrics")
async def metrics_endpoint(request: Request) -> dict[str, Any]:
    """Counters and latency histograms for sweeps and transitions."""
    return await _service(request).metrics.snapshot()
