# ─────────────────────────────────────────────────────────────────────────────
# Health + Stats Routes
# ─────────────────────────────────────────────────────────────────────────────
#   /api/health  → Liveness probe. Near-zero cost, never quota-gated.
#   /api/stats   → Active quota identities, uptime, memory, request counters.
# ─────────────────────────────────────────────────────────────────────────────

import resource
import sys
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from gateway.config import Settings
from gateway.dependencies import get_metrics, get_quota_gate, get_settings_dep
from gateway.quota import QuotaGate
from gateway.schemas import HealthResponse, StatsResponse
from gateway.services.gateway import isoformat_utc
from gateway.services.metrics import GatewayMetrics

router = APIRouter()


@router.get("/api/health", response_model=HealthResponse)
async def health(settings: Settings = Depends(get_settings_dep)) -> HealthResponse:
    """Liveness probe: is the process alive?"""
    return HealthResponse(
        status="OK",
        timestamp=isoformat_utc(datetime.now(timezone.utc)),
        version=settings.app_version,
    )


@router.get("/api/stats", response_model=None)
async def stats(
    gate: QuotaGate = Depends(get_quota_gate),
    metrics: GatewayMetrics = Depends(get_metrics),
    settings: Settings = Depends(get_settings_dep),
) -> JSONResponse:
    """Usage statistics. Field names match the frontend's existing stats view."""
    response = StatsResponse(
        total_active_ips=gate.active_clients,
        server_uptime=round(metrics.uptime_seconds, 1),
        memory_usage=_memory_usage(),
        environment=settings.environment,
        quota={
            "limit": gate.limit,
            "window_seconds": gate.window_seconds,
            "max_clients": settings.quota_max_clients,
            "evictions": gate.evictions,
        },
        requests=metrics.to_dict(),
    )
    return JSONResponse(content=response.model_dump(by_alias=True))


def _memory_usage() -> dict[str, Any]:
    """Peak resident set size of this process."""
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is kilobytes on Linux, bytes on macOS
    scale = 1 if sys.platform == "darwin" else 1024
    return {"max_rss_bytes": usage.ru_maxrss * scale}
