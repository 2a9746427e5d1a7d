"""EscalationScheduler: APScheduler driver for the escalation sweep.

One job, ``escalation_sweep``, on a crontab (daily at 01:00 by default) or
a fixed interval. The same sweep is exposed for a manual "run now".

- Sweeps never overlap: scheduled and manual runs share one lock
- ``stop()`` signals the running sweep, which halts between leads
- Trigger changes take effect without a restart (``reschedule``)
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Protocol

import structlog
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from leadflow.config import settings
from leadflow.workflow.clock import Clock
from leadflow.workflow.errors import ValidationError
from leadflow.workflow.types import SweepResult

logger = structlog.get_logger()

SWEEP_JOB_ID = "escalation_sweep"
_MISFIRE_GRACE_TIME_S = 3600


class SweepRunner(Protocol):
    @property
    def clock(self) -> Clock: ...

    async def run_escalation_sweep(self, stop_event: asyncio.Event | None = None) -> SweepResult: ...


def validate_cron_expression(expr: str) -> str | None:
    """Return None if valid, error message if invalid."""
    try:
        CronTrigger.from_crontab(expr)
        return None
    except (ValueError, TypeError) as e:
        return str(e)


class EscalationScheduler:
    """Owns the APScheduler instance and the sweep lifecycle."""

    def __init__(
        self,
        service: SweepRunner,
        *,
        cron: str | None = None,
        interval_seconds: int | None = None,
        timezone: str | None = None,
    ) -> None:
        self.service = service
        self.cron = cron if cron is not None else settings.sweep_cron
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.sweep_interval_seconds
        )
        self.timezone = (timezone if timezone is not None else settings.sweep_timezone) or None
        self._check_trigger(self.cron, self.interval_seconds)

        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": _MISFIRE_GRACE_TIME_S,
            }
        )
        self.scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)

        self._sweep_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._running = False
        self.last_result: SweepResult | None = None
        self.last_run_at: datetime | None = None

    # ── Lifecycle ───────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def sweep_in_progress(self) -> bool:
        return self._sweep_lock.locked()

    async def start(self) -> None:
        if self._running:
            return
        self._stop_event.clear()
        self.scheduler.add_job(
            self._run_scheduled,
            trigger=self._build_trigger(),
            id=SWEEP_JOB_ID,
            name="Lead escalation sweep",
            replace_existing=True,
        )
        self.scheduler.start()
        self._running = True
        logger.info(
            "escalation_scheduler_started",
            schedule=self._describe_trigger(),
            timezone=self.timezone or "server",
        )

    async def stop(self) -> None:
        """Signal any running sweep, wait for its current lead, then shut down."""
        if not self._running:
            return
        self._stop_event.set()
        async with self._sweep_lock:
            self.scheduler.shutdown(wait=False)
            self._running = False
        self._stop_event.clear()
        logger.info("escalation_scheduler_stopped")

    # ── Sweeps ──────────────────────────────────────────────────────────

    async def trigger_now(self) -> SweepResult:
        """Run a sweep immediately. Waits for a sweep already in flight."""
        logger.info("escalation_sweep_manual_trigger")
        return await self.run_sweep()

    async def run_sweep(self) -> SweepResult:
        async with self._sweep_lock:
            result = await self.service.run_escalation_sweep(stop_event=self._stop_event)
            self.last_result = result
            self.last_run_at = self.service.clock.now()
            return result

    async def _run_scheduled(self) -> None:
        if self._stop_event.is_set():
            return
        await self.run_sweep()

    # ── Triggers ────────────────────────────────────────────────────────

    @staticmethod
    def _check_trigger(cron: str, interval_seconds: int) -> None:
        if interval_seconds < 0:
            raise ValidationError("sweep interval must not be negative")
        if interval_seconds == 0:
            error = validate_cron_expression(cron)
            if error:
                raise ValidationError(f"invalid sweep cron {cron!r}: {error}")

    def _build_trigger(self) -> Any:
        if self.interval_seconds > 0:
            return IntervalTrigger(seconds=self.interval_seconds, timezone=self.timezone)
        return CronTrigger.from_crontab(self.cron, timezone=self.timezone)

    def _describe_trigger(self) -> str:
        if self.interval_seconds > 0:
            return f"every {self.interval_seconds}s"
        return self.cron

    def reschedule(
        self,
        cron: str | None = None,
        interval_seconds: int | None = None,
        timezone: str | None = None,
    ) -> None:
        """Change the sweep trigger. Applies immediately when running."""
        new_cron = cron if cron is not None else self.cron
        new_interval = interval_seconds if interval_seconds is not None else self.interval_seconds
        self._check_trigger(new_cron, new_interval)

        self.cron = new_cron
        self.interval_seconds = new_interval
        if timezone is not None:
            self.timezone = timezone or None

        if self._running:
            self.scheduler.reschedule_job(SWEEP_JOB_ID, trigger=self._build_trigger())
        logger.info(
            "escalation_sweep_rescheduled",
            schedule=self._describe_trigger(),
            timezone=self.timezone or "server",
        )

    def list_jobs(self) -> list[dict[str, Any]]:
        """Snapshot of scheduled jobs."""
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "schedule": self._describe_trigger(),
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            })
        return jobs

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "sweep_in_progress": self.sweep_in_progress,
            "schedule": self._describe_trigger(),
            "timezone": self.timezone or "server",
            "jobs": self.list_jobs(),
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }

    # ── Listeners ───────────────────────────────────────────────────────

    @staticmethod
    def _on_job_missed(event: Any) -> None:
        logger.warning(
            "escalation_sweep_missed",
            job_id=event.job_id,
            scheduled_run_time=str(event.scheduled_run_time),
        )

    @staticmethod
    def _on_job_error(event: Any) -> None:
        logger.error(
            "escalation_sweep_job_failed",
            job_id=event.job_id,
            error=str(event.exception),
            traceback=event.traceback,
        )
