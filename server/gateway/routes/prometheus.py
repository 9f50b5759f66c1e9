# ─────────────────────────────────────────────────────────────────────────────
# Prometheus Metrics Endpoint — text exposition format
# ─────────────────────────────────────────────────────────────────────────────
# GET /metrics/prometheus → text/plain Prometheus format
# Bridges GatewayMetrics + QuotaGate → prometheus-client gauges.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CollectorRegistry, Gauge, generate_latest

from gateway.dependencies import get_metrics, get_quota_gate
from gateway.exceptions import ErrorCategory
from gateway.quota import QuotaGate
from gateway.services.metrics import GatewayMetrics

router = APIRouter()

# ── Prometheus metrics (custom registry to avoid default process metrics) ─────

_registry = CollectorRegistry()

_quota_decisions = Gauge(
    "gateway_quota_decisions",
    "Quota decisions since start, by outcome",
    ["outcome"],
    registry=_registry,
)

_errors = Gauge(
    "gateway_errors",
    "Failed requests since start, by error category",
    ["category"],
    registry=_registry,
)

_successes = Gauge(
    "gateway_successes",
    "Successful requests since start, by route",
    ["route"],
    registry=_registry,
)

_active_clients = Gauge(
    "gateway_quota_active_clients",
    "Client identities currently tracked by the quota gate",
    registry=_registry,
)

_upstream_latency = Gauge(
    "gateway_upstream_latency_seconds",
    "Upstream chat latency over the recent window",
    ["quantile"],
    registry=_registry,
)

_uptime = Gauge(
    "gateway_uptime_seconds",
    "Seconds since the gateway started",
    registry=_registry,
)


def _sync_metrics(metrics: GatewayMetrics, gate: QuotaGate) -> None:
    """Sync GatewayMetrics data into Prometheus gauges."""
    data = metrics.to_dict()

    _quota_decisions.labels(outcome="admitted").set(data["quota_admitted"])
    _quota_decisions.labels(outcome="rejected").set(data["quota_rejected"])
    _successes.labels(route="chat").set(data["chat_successes"])
    _successes.labels(route="image").set(data["image_successes"])

    errors = data["errors_by_category"]
    for category in ErrorCategory:
        if category is ErrorCategory.rejected_by_quota:
            continue
        _errors.labels(category=category.value).set(errors.get(category.value, 0))

    _active_clients.set(gate.active_clients)
    _upstream_latency.labels(quantile="0.5").set(data["upstream_latency_p50_ms"] / 1000)
    _upstream_latency.labels(quantile="0.95").set(data["upstream_latency_p95_ms"] / 1000)
    _uptime.set(data["uptime_seconds"])


@router.get("/metrics/prometheus")
async def prometheus_metrics(
    metrics: GatewayMetrics = Depends(get_metrics),
    gate: QuotaGate = Depends(get_quota_gate),
) -> Response:
    """Prometheus text exposition format metrics endpoint."""
    _sync_metrics(metrics, gate)
    return Response(
        content=generate_latest(_registry),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
