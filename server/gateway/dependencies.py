# ─────────────────────────────────────────────────────────────────────────────
# Dependency Injection — FastAPI Depends() providers
# ─────────────────────────────────────────────────────────────────────────────
# State flows: lifespan creates → app.state stores → Depends() injects.
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import Request

from gateway.config import Settings
from gateway.identity import get_client_id
from gateway.quota import QuotaGate
from gateway.services.gateway import GatewayService
from gateway.services.metrics import GatewayMetrics


def get_gateway_service(request: Request) -> GatewayService:
    """Inject GatewayService into endpoints via Depends()."""
    return request.app.state.gateway_service  # type: ignore[no-any-return]


def get_quota_gate(request: Request) -> QuotaGate:
    return request.app.state.quota_gate  # type: ignore[no-any-return]


def get_settings_dep(request: Request) -> Settings:
    """Inject Settings into endpoints via Depends()."""
    return request.app.state.settings  # type: ignore[no-any-return]


def get_metrics(request: Request) -> GatewayMetrics:
    """Inject GatewayMetrics into endpoints via Depends()."""
    return request.app.state.metrics  # type: ignore[no-any-return]


def get_client_identity(request: Request) -> str:
    """Quota key for the calling client."""
    return get_client_id(request)
