"""Prometheus metrics exposed on the internal listener."""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    PLATFORM_COLLECTOR,
    PROCESS_COLLECTOR,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()
REGISTRY.register(PROCESS_COLLECTOR)
REGISTRY.register(PLATFORM_COLLECTOR)

ACTION_DURATION = Histogram(
    "namespace_provisioner_action_duration_seconds",
    "Duration to run each action",
    ["action"],
    registry=REGISTRY,
)
EXPIRY_COUNTER = Counter(
    "namespace_provisioner_expiry_total",
    "TTL-triggered deletions by outcome",
    ["outcome"],
    registry=REGISTRY,
)
SCHEDULED_GAUGE = Gauge(
    "namespace_provisioner_scheduled_expiries",
    "Namespaces currently waiting for their TTL",
    registry=REGISTRY,
)


def render_latest() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
