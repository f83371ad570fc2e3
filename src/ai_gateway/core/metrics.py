"""
Prometheus metrics for the gateway.

Metrics Exposed:
    gateway_requests_total{capability,status}       - Requests served
    gateway_request_duration_seconds{capability}    - Request latency
    gateway_tool_invocations_total{tool,outcome}    - External tool runs (ok/failed/timeout)
    gateway_artifacts_created_total{kind}           - Artifacts registered
    gateway_artifacts_deleted_total{reason}         - Artifacts removed (served/discarded/sweep)
    gateway_live_artifacts                          - Artifacts not yet deleted
    gateway_proxy_failures_total                    - Upstream transport failures

Each ``GatewayMetrics`` owns its own ``CollectorRegistry`` so several apps
(for example one per test) never collide on metric names.

Usage:
    metrics = GatewayMetrics()
    metrics.record_request("speech-synthesis", 200, 0.41)
    content, content_type = metrics.get_metrics_response()
"""
from __future__ import annotations

from typing import Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class GatewayMetrics:
    """Counters, histograms and gauges for one gateway instance."""

    def __init__(self) -> None:
        self.registry = CollectorRegistry()

        self._requests_total = Counter(
            "gateway_requests_total",
            "Requests served by the gateway",
            ["capability", "status"],
            registry=self.registry,
        )
        self._request_duration = Histogram(
            "gateway_request_duration_seconds",
            "Request latency in seconds",
            ["capability"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self.registry,
        )
        self._tool_invocations = Counter(
            "gateway_tool_invocations_total",
            "External tool invocations",
            ["tool", "outcome"],
            registry=self.registry,
        )
        self._artifacts_created = Counter(
            "gateway_artifacts_created_total",
            "Artifacts registered with the lifecycle manager",
            ["kind"],
            registry=self.registry,
        )
        self._artifacts_deleted = Counter(
            "gateway_artifacts_deleted_total",
            "Artifacts deleted",
            ["reason"],
            registry=self.registry,
        )
        self._live_artifacts = Gauge(
            "gateway_live_artifacts",
            "Artifacts registered but not yet deleted",
            registry=self.registry,
        )
        self._proxy_failures = Counter(
            "gateway_proxy_failures_total",
            "Upstream transport failures",
            registry=self.registry,
        )

    def record_request(self, capability: str, status: int, duration: float) -> None:
        self._requests_total.labels(capability=capability, status=str(status)).inc()
        self._request_duration.labels(capability=capability).observe(duration)

    def record_tool(self, tool: str, outcome: str) -> None:
        self._tool_invocations.labels(tool=tool, outcome=outcome).inc()

    def artifact_created(self, kind: str) -> None:
        self._artifacts_created.labels(kind=kind).inc()
        self._live_artifacts.inc()

    def artifact_deleted(self, reason: str, was_live: bool = True) -> None:
        self._artifacts_deleted.labels(reason=reason).inc()
        if was_live:
            self._live_artifacts.dec()

    def proxy_failure(self) -> None:
        self._proxy_failures.inc()

    def get_metrics_response(self) -> Tuple[bytes, str]:
        """Prometheus exposition body and content type."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
