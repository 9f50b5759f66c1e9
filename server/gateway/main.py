# FastAPI application factory with lifespan management.
# Entrypoint: uvicorn gateway.main:create_app --factory --host 0.0.0.0 --port 3000

import asyncio
import contextlib
import math
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from gateway.config import Settings, get_settings
from gateway.exceptions import quota_rejection_response, register_exception_handlers
from gateway.identity import ClientIdentityResolver
from gateway.logging_config import configure_logging
from gateway.messages import user_message
from gateway.middleware import RequestContextMiddleware
from gateway.quota import QuotaGate
from gateway.rate_limit import burst_limit, configure_burst_limit, limiter
from gateway.routes import chat, health, image
from gateway.routes import prometheus as prometheus_routes
from gateway.services.gateway import GatewayService, isoformat_utc
from gateway.services.metrics import GatewayMetrics
from gateway.services.proxy import UpstreamProxy

logger = structlog.get_logger(__name__)


def _parse_window_seconds(rate_limit: str) -> int:
    """Extract window duration from slowapi rate limit string."""
    windows = {"second": 1, "minute": 60, "hour": 3600, "day": 86400}
    try:
        _, window = rate_limit.strip().split("/")
        return windows.get(window.strip(), 60)
    except (ValueError, AttributeError):
        return 60


def _burst_reset_at(request: Request) -> datetime:
    """When the tripped burst window reopens, from the limiter's own counters."""
    now = datetime.now(timezone.utc)
    current = getattr(request.state, "view_rate_limit", None)
    if current is not None:
        item, identifiers = current
        reset_epoch, _ = request.app.state.limiter.limiter.get_window_stats(item, *identifiers)
        return max(datetime.fromtimestamp(reset_epoch, tz=timezone.utc), now)
    return now + timedelta(seconds=_parse_window_seconds(burst_limit()))


async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Burst floods get the same 429 body as quota rejections, resetTime included."""
    settings: Settings = getattr(request.app.state, "settings", None) or get_settings()
    reset_at = _burst_reset_at(request)
    retry_after = max(math.ceil((reset_at - datetime.now(timezone.utc)).total_seconds()), 1)
    logger.warning(
        "burst_limit_exceeded",
        path=request.url.path,
        method=request.method,
        detail=str(exc.detail),
        reset_at=isoformat_utc(reset_at),
    )
    return quota_rejection_response(
        user_message("burst_limited", settings.message_locale),
        isoformat_utc(reset_at),
        retry_after,
    )


if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider


def _configure_otel(exporter_type: str) -> "TracerProvider | None":
    """Configure OpenTelemetry tracing (console exporter)."""
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    if exporter_type != "console":
        logger.warning("unknown_otel_exporter", exporter=exporter_type)
        return None

    from opentelemetry import trace
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter

    provider = TracerProvider()
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    logger.info("otel_configured", exporter=exporter_type)
    return provider


def init_app_state(app: FastAPI, settings: Settings, http_client: httpx.AsyncClient) -> None:
    """Build the gate → proxy → service graph and store it on app.state."""
    metrics = GatewayMetrics()
    gate = QuotaGate(
        limit=settings.quota_limit,
        window_seconds=settings.quota_window_seconds,
        max_clients=settings.quota_max_clients,
    )
    proxy = UpstreamProxy(settings, http_client, metrics=metrics)

    app.state.settings = settings
    configure_burst_limit(settings.burst_rate_limit)
    app.state.http_client = http_client
    app.state.identity_resolver = ClientIdentityResolver(settings.trusted_proxies)
    app.state.quota_gate = gate
    app.state.metrics = metrics
    app.state.gateway_service = GatewayService(gate, proxy, settings, metrics=metrics)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup/shutdown: shared upstream client, quota sweeper."""
    settings = get_settings()

    otel_provider = None
    otel_exporter = os.environ.get("OTEL_EXPORTER", "")
    if otel_exporter:
        otel_provider = _configure_otel(otel_exporter)

    http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.upstream_timeout_seconds))
    init_app_state(app, settings, http_client)

    logger.info(
        "gateway_started",
        port=settings.port,
        environment=settings.environment,
        api_key_configured=bool(settings.upstream_api_key.get_secret_value()),
        quota_limit=settings.quota_limit,
        quota_window_seconds=settings.quota_window_seconds,
    )

    sweep_task = None
    if settings.quota_sweep_interval_seconds > 0:
        # Task ref stored to prevent GC cancellation
        sweep_task = asyncio.create_task(
            _sweep_quota_forever(
                app.state.quota_gate,
                settings.quota_sweep_interval_seconds,
                settings.quota_idle_grace_seconds,
            )
        )
        sweep_task.add_done_callback(_on_sweep_done)
        app.state._quota_sweep_task = sweep_task

    yield

    logger.info("gateway_shutting_down")
    # A sweeper that already died was logged by _on_sweep_done
    if sweep_task is not None and not sweep_task.done():
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    await http_client.aclose()

    if otel_provider is not None:
        otel_provider.shutdown()


async def _sweep_quota_forever(gate: QuotaGate, interval_s: int, idle_grace_s: int) -> None:
    """Periodically drop expired, idle quota records."""
    while True:
        await asyncio.sleep(interval_s)
        removed = gate.sweep(idle_grace_seconds=idle_grace_s)
        if removed:
            logger.info("quota_swept", removed=removed, active_clients=gate.active_clients)


def _on_sweep_done(task: asyncio.Task[None]) -> None:
    """Log sweeper failures (suppresses silent exceptions). Cancellation is shutdown."""
    if task.cancelled():
        return
    if exc := task.exception():
        logger.critical(
            "quota_sweep_task_failed",
            error=str(exc),
            error_type=type(exc).__name__,
        )


def _parse_origins(allowed_origins: str) -> list[str]:
    """Parse comma-separated CORS origins. Empty string → deny all."""
    if not allowed_origins.strip():
        logger.warning(
            "cors_no_origins_configured",
            hint="Set ALLOWED_ORIGINS env var. Cross-origin requests will be rejected.",
        )
        return []
    return [origin.strip() for origin in allowed_origins.split(",") if origin.strip()]


def _mount_frontend(app: FastAPI, settings: Settings) -> None:
    """Serve the static frontend at "/" when the bundle is present."""
    static_dir = Path(settings.static_dir)
    if not static_dir.is_dir():
        logger.info("frontend_not_mounted", static_dir=str(static_dir))
        return

    index = static_dir / settings.index_file
    if index.is_file():

        @app.get("/", include_in_schema=False)
        async def frontend_index() -> FileResponse:
            return FileResponse(index)

    # Mounted last: API routes above always win.
    app.mount("/", StaticFiles(directory=static_dir), name="frontend")


def create_app() -> FastAPI:
    """Application factory. Invoked by: uvicorn gateway.main:create_app --factory"""
    settings = get_settings()
    configure_logging(
        log_level=settings.log_level,
        json_output=settings.log_json,
        environment=settings.environment,
        version=settings.app_version,
    )

    app = FastAPI(
        title="Chat & Image Gateway",
        description="Per-client quota gate in front of chat-completion and image-generation APIs",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

    # Middleware order (Starlette applies in reverse): CORS → RequestContext
    app.add_middleware(RequestContextMiddleware)

    origins = _parse_origins(settings.allowed_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    register_exception_handlers(app)

    app.include_router(chat.router, tags=["chat"])
    app.include_router(image.router, tags=["image"])
    app.include_router(health.router, tags=["health"])
    app.include_router(prometheus_routes.router, tags=["prometheus"])
    _mount_frontend(app, settings)

    return app


def run() -> None:
    """Console entrypoint: serve on $PORT."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("gateway.main:create_app", factory=True, host="0.0.0.0", port=settings.port)
