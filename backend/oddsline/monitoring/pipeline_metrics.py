"""
backend/oddsline/monitoring/pipeline_metrics.py

Purpose:
    Prometheus metrics for the odds pipeline: feed requests and quota, merge
    writes, lifecycle transitions, settlement outcomes, event bus traffic and
    periodic task runs.

Dependencies:
    - prometheus_client
"""

from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import Counter, Gauge, Histogram

METRIC_FEED_REQUESTS = Counter(
    "oddsline_feed_requests_total",
    "Upstream feed requests by endpoint and outcome.",
    ["endpoint", "outcome"],
)
METRIC_FEED_QUOTA_REMAINING = Gauge(
    "oddsline_feed_quota_remaining",
    "Most recent x-requests-remaining reported by the upstream feed.",
)
METRIC_FEED_QUOTA_USED = Gauge(
    "oddsline_feed_quota_used",
    "Most recent x-requests-used reported by the upstream feed.",
)
METRIC_FEED_FALLBACK_SERVED = Counter(
    "oddsline_feed_fallback_snapshot_total",
    "Requests answered from the last-known-good snapshot.",
    ["sport_key"],
)
METRIC_MERGE_WRITES = Counter(
    "oddsline_merge_writes_total",
    "Odds documents written by the merge engine.",
    ["result"],
)
METRIC_MERGE_FAILED_BATCHES = Counter(
    "oddsline_merge_failed_batches_total",
    "Odds write batches that raised a store error.",
)
METRIC_LIFECYCLE_TRANSITIONS = Counter(
    "oddsline_lifecycle_transitions_total",
    "Applied match status transitions.",
    ["from_status", "to_status"],
)
METRIC_WAGERS_SETTLED = Counter(
    "oddsline_wagers_settled_total",
    "Wagers moved from pending to a terminal status.",
    ["status"],
)
METRIC_WAGERS_UNPARSEABLE = Counter(
    "oddsline_wagers_unparseable_total",
    "Wagers settled as lost because the selection text could not be parsed.",
)
METRIC_BUS_EVENTS = Counter(
    "oddsline_event_bus_events_total",
    "Event bus activity by event type and outcome (published, handled, failed, dropped).",
    ["event_type", "outcome"],
)
METRIC_TASK_RUNS = Counter(
    "oddsline_task_runs_total",
    "Periodic task invocations by outcome.",
    ["task", "outcome"],
)
METRIC_TASK_DURATION = Histogram(
    "oddsline_task_duration_seconds",
    "Wall time of completed periodic task runs.",
    ["task"],
)


@contextmanager
def observe_latency(metric):
    start = perf_counter()
    try:
        yield
    finally:
        metric.observe(perf_counter() - start)
