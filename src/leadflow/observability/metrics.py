"""leadflow metrics instrumentation.

In-process, zero-dependency metrics collector tracking:
  - Sweep throughput (sweeps, leads processed, reminders, escalations, errors)
  - Escalations by target level and human-triggered transitions by kind
  - Latency histograms for whole sweeps and single-lead sweep steps

All state is held in a single process-global singleton. Snapshots are
exported as plain dicts on /metrics and summarized in the sweep log line.

Counters/histograms use an asyncio.Lock so they are safe from concurrent
coroutines.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Histogram implementation
# ---------------------------------------------------------------------------

# Fixed upper-bound buckets in milliseconds. Sweeps over thousands of leads
# run for minutes, hence the long tail.
_LATENCY_BUCKETS_MS: tuple[float, ...] = (
    1, 5, 10, 25, 50, 100, 250, 500, 1_000, 5_000,
    30_000, 60_000, 300_000, float("inf"),
)


@dataclass
class Histogram:
    """Latency histogram backed by fixed buckets + running stats."""

    name: str
    _buckets: list[int] = field(default_factory=lambda: [0] * len(_LATENCY_BUCKETS_MS))
    _count: int = 0
    _sum_ms: float = 0.0
    _min_ms: float = float("inf")
    _max_ms: float = 0.0

    def record(self, value_ms: float) -> None:
        self._count += 1
        self._sum_ms += value_ms
        self._min_ms = min(self._min_ms, value_ms)
        self._max_ms = max(self._max_ms, value_ms)
        for i, bound in enumerate(_LATENCY_BUCKETS_MS):
            if value_ms <= bound:
                self._buckets[i] += 1
                break

    @property
    def count(self) -> int:
        return self._count

    @property
    def mean_ms(self) -> float:
        return self._sum_ms / self._count if self._count else 0.0

    def percentile(self, p: float) -> float:
        """Estimate percentile via linear interpolation across buckets."""
        if self._count == 0:
            return 0.0
        target = math.ceil(p / 100 * self._count)
        cumulative = 0
        prev_bound = 0.0
        for i, bound in enumerate(_LATENCY_BUCKETS_MS):
            cumulative += self._buckets[i]
            if cumulative >= target:
                bucket_count = self._buckets[i]
                if bucket_count == 0:
                    return bound
                frac = (target - (cumulative - bucket_count)) / bucket_count
                upper = bound if not math.isinf(bound) else self._max_ms
                return prev_bound + frac * (upper - prev_bound)
            prev_bound = bound
        return self._max_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self._count,
            "min_ms": round(self._min_ms, 2) if self._count else 0,
            "max_ms": round(self._max_ms, 2),
            "mean_ms": round(self.mean_ms, 2),
            "p50_ms": round(self.percentile(50), 2),
            "p95_ms": round(self.percentile(95), 2),
        }


# ---------------------------------------------------------------------------
# MetricsCollector
# ---------------------------------------------------------------------------

class MetricsCollector:
    """Process-global metrics registry for the workflow engine.

    Counters:
        sweeps_total                     Sweeps started (scheduled or manual)
        sweep_leads_processed_total      Active leads evaluated by sweeps
        reminders_total                  Reminder records written
        escalations_total                Escalations applied
        sweep_errors_total               Per-lead sweep failures and timeouts
        escalations_by_level[level]      Escalations by target level (1/2/3)
        transitions_total[kind]          Human-triggered transitions by kind

    Histograms (milliseconds):
        sweep_latency_ms                 Whole sweep wall-clock time
        lead_sweep_latency_ms            One lead's evaluate + write
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._counters: dict[str, int] = defaultdict(int)
        self._labeled_counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._histograms: dict[str, Histogram] = {
            "sweep_latency_ms": Histogram("sweep_latency_ms"),
            "lead_sweep_latency_ms": Histogram("lead_sweep_latency_ms"),
        }
        self._started_at: float = time.monotonic()

    # ------------------------------------------------------------------
    # Async increment / record
    # ------------------------------------------------------------------

    async def inc(self, name: str, value: int = 1) -> None:
        async with self._lock:
            self._counters[name] += value

    async def inc_labeled(self, name: str, label: str, value: int = 1) -> None:
        async with self._lock:
            self._labeled_counters[name][label] += value

    async def record(self, histogram: str, value_ms: float) -> None:
        async with self._lock:
            if histogram in self._histograms:
                self._histograms[histogram].record(value_ms)

    @asynccontextmanager
    async def timer(self, histogram: str) -> AsyncIterator[None]:
        """Async context manager that auto-records elapsed ms."""
        t0 = time.monotonic()
        try:
            yield
        finally:
            await self.record(histogram, (time.monotonic() - t0) * 1000)

    # ------------------------------------------------------------------
    # Named semantic helpers used by the workflow service
    # ------------------------------------------------------------------

    async def sweep_started(self) -> None:
        await self.inc("sweeps_total")

    async def lead_swept(self, action: str | None) -> None:
        await self.inc("sweep_leads_processed_total")
        if action == "reminder":
            await self.inc("reminders_total")

    async def lead_escalated(self, level: int) -> None:
        await self.inc("escalations_total")
        await self.inc_labeled("escalations_by_level", str(level))

    async def sweep_error(self) -> None:
        await self.inc("sweep_errors_total")

    async def transition(self, kind: str) -> None:
        await self.inc_labeled("transitions_total", kind)

    # ------------------------------------------------------------------
    # Snapshot / export
    # ------------------------------------------------------------------

    async def snapshot(self) -> dict[str, Any]:
        """Return a complete metrics snapshot (lock-protected copy)."""
        async with self._lock:
            return {
                "uptime_seconds": round(time.monotonic() - self._started_at, 1),
                "counters": dict(self._counters),
                "labeled_counters": {k: dict(v) for k, v in self._labeled_counters.items()},
                "histograms": {k: v.to_dict() for k, v in self._histograms.items()},
            }


_collector: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Return (or lazily create) the process-global MetricsCollector."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
