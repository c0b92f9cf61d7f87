"""Prometheus metric definitions for the bridge."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


requests_notified_total = Counter(
    "requests_notified_total",
    "Pending requests published as prompts",
    ["service"],
)
notify_failures_total = Counter(
    "notify_failures_total",
    "Pending requests that could not be published",
    ["service", "reason"],
)
decisions_total = Counter(
    "decisions_total",
    "Decision events by outcome",
    ["service", "outcome"],
)
malformed_tokens_total = Counter(
    "malformed_tokens_total",
    "Action-selected events whose correlation token did not parse",
    ["service"],
)
decision_latency_seconds = Histogram(
    "decision_latency_seconds",
    "Time spent applying one decision transaction",
    ["service"],
)
pipeline_dropped_total = Counter(
    "pipeline_dropped_total",
    "Events discarded by the drop-oldest queue policy",
    ["service", "pipeline"],
)
pipeline_queue_depth = Gauge(
    "pipeline_queue_depth",
    "Events waiting in a pipeline queue",
    ["service", "pipeline"],
)
watcher_subscriptions_active = Gauge(
    "watcher_subscriptions_active",
    "Live subscriptions held by the request watcher",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
