"""Metrics instrumentation tests.

These tests run entirely in-process (no DB, no scheduler).
They verify:
  1. Counter increment semantics (plain + labeled)
  2. Latency histogram recording, bucket placement, and percentile estimates
  3. Semantic helper methods (sweep_started, lead_swept, lead_escalated, ...)
  4. Snapshot structure
"""

from __future__ import annotations

import pytest

from leadflow.observability.metrics import (
    Histogram,
    MetricsCollector,
    _LATENCY_BUCKETS_MS,
    get_metrics,
)


@pytest.fixture()
def mc() -> MetricsCollector:
    """Fresh MetricsCollector for each test (avoids global state bleed)."""
    return MetricsCollector()


# ---------------------------------------------------------------------------
# Histogram unit tests
# ---------------------------------------------------------------------------


class TestHistogram:
    def test_count_increases(self):
        h = Histogram("test")
        assert h.count == 0
        h.record(50)
        h.record(100)
        assert h.count == 2

    def test_bucket_placement(self):
        h = Histogram("test")
        h.record(5)
        assert h._buckets[1] == 1
        h.record(1000)
        assert h._buckets[list(_LATENCY_BUCKETS_MS).index(1000)] == 1

    def test_above_max_bucket_goes_to_inf(self):
        h = Histogram("test")
        h.record(1_000_000)
        assert h._buckets[_LATENCY_BUCKETS_MS.index(float("inf"))] == 1

    def test_mean_calculation(self):
        h = Histogram("test")
        h.record(100)
        h.record(200)
        assert abs(h.mean_ms - 150.0) < 0.01

    def test_percentile_empty(self):
        assert Histogram("test").percentile(95) == 0.0

    def test_percentile_within_range(self):
        h = Histogram("test")
        for v in (10, 20, 30, 40, 400):
            h.record(v)
        assert 0 < h.percentile(50) <= 50
        assert h.percentile(95) <= 500

    def test_percentile_zero_with_empty_first_bucket(self):
        h = Histogram("test")
        h.record(100)
        assert h.percentile(0) == _LATENCY_BUCKETS_MS[0]
        assert h.percentile(100) == 100

    def test_to_dict(self):
        h = Histogram("test")
        assert h.to_dict()["min_ms"] == 0
        h.record(12.5)
        d = h.to_dict()
        assert d["count"] == 1
        assert d["min_ms"] == 12.5


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class TestCounters:
    async def test_inc(self, mc):
        await mc.inc("sweeps_total")
        await mc.inc("sweeps_total", 2)
        assert (await mc.snapshot())["counters"]["sweeps_total"] == 3

    async def test_inc_labeled(self, mc):
        await mc.inc_labeled("transitions_total", "note")
        await mc.inc_labeled("transitions_total", "note")
        await mc.inc_labeled("transitions_total", "rm_reply")
        labeled = (await mc.snapshot())["labeled_counters"]["transitions_total"]
        assert labeled == {"note": 2, "rm_reply": 1}

    async def test_unknown_histogram_is_ignored(self, mc):
        await mc.record("no_such_histogram", 10)
        assert "no_such_histogram" not in (await mc.snapshot())["histograms"]


class TestSemanticHelpers:
    async def test_sweep_helpers(self, mc):
        await mc.sweep_started()
        await mc.lead_swept("reminder")
        await mc.lead_swept("escalation")
        await mc.lead_swept(None)
        await mc.lead_escalated(1)
        await mc.lead_escalated(3)
        await mc.sweep_error()
        snap = await mc.snapshot()
        counters = snap["counters"]
        assert counters["sweeps_total"] == 1
        assert counters["sweep_leads_processed_total"] == 3
        assert counters["reminders_total"] == 1
        assert counters["escalations_total"] == 2
        assert counters["sweep_errors_total"] == 1
        assert snap["labeled_counters"]["escalations_by_level"] == {"1": 1, "3": 1}

    async def test_timer_records(self, mc):
        async with mc.timer("lead_sweep_latency_ms"):
            pass
        assert (await mc.snapshot())["histograms"]["lead_sweep_latency_ms"]["count"] == 1


class TestSnapshot:
    async def test_structure(self, mc):
        snap = await mc.snapshot()
        assert set(snap) == {"uptime_seconds", "counters", "labeled_counters", "histograms"}
        assert set(snap["histograms"]) == {"sweep_latency_ms", "lead_sweep_latency_ms"}


def test_get_metrics_is_singleton():
    assert get_metrics() is get_metrics()
