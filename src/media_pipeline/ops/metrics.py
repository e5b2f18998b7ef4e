from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager, suppress

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

REGISTRY = CollectorRegistry()

# Latency buckets (seconds) for subprocess-bound pipeline stages.
PIPELINE_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0, 300.0)

items_queued = Counter("media_pipeline_items_queued_total", "Items submitted", registry=REGISTRY)
items_finished = Counter(
    "media_pipeline_items_finished_total",
    "Items finished by final status",
    labelnames=("status",),
    registry=REGISTRY,
)
stage_fallbacks = Counter(
    "media_pipeline_stage_fallbacks_total",
    "Collaborator failures absorbed with a fallback value",
    labelnames=("stage",),
    registry=REGISTRY,
)
stage_seconds = Histogram(
    "media_pipeline_stage_seconds",
    "Pipeline stage latency (seconds)",
    labelnames=("stage",),
    registry=REGISTRY,
    buckets=PIPELINE_BUCKETS,
)
active_workers = Gauge(
    "media_pipeline_active_workers", "Pipeline runs currently executing", registry=REGISTRY
)
media_views = Counter("media_pipeline_views_total", "Playback sessions started", registry=REGISTRY)


@contextmanager
def time_hist(h: Histogram) -> Iterator[Callable[[], float]]:
    """
    Time a block and observe into a histogram.
    Usage:
        with time_hist(hist.labels(stage="x")) as elapsed:
            ...
        dt = elapsed()
    """
    t0 = time.perf_counter()
    dt: float | None = None

    def elapsed() -> float:
        return float(dt or 0.0)

    try:
        yield elapsed
    finally:
        dt = max(0.0, time.perf_counter() - t0)
        with suppress(Exception):
            h.observe(dt)
