# ─────────────────────────────────────────────────────────────────────────────
# POST /api/chat — chat completion relay (THIN)
# ─────────────────────────────────────────────────────────────────────────────


from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from gateway.dependencies import get_client_identity, get_gateway_service
from gateway.exceptions import quota_rejection_response
from gateway.rate_limit import burst_limit, limiter
from gateway.schemas import ChatRequest, ErrorResponse, QuotaRejectionResponse
from gateway.services.gateway import GatewayService, QuotaRejection

router = APIRouter()


@router.post(
    "/api/chat",
    response_model=None,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": QuotaRejectionResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
@limiter.limit(burst_limit)
async def chat(
    request: Request,
    body: ChatRequest,
    client_id: str = Depends(get_client_identity),
    service: GatewayService = Depends(get_gateway_service),
) -> dict[str, Any] | JSONResponse:
    """Relay a chat completion; the upstream payload is returned unchanged.

    Quota rejections are a normal 429 outcome; proxy failures are raised
    as GatewayError and rendered by the registered exception handlers.
    """
    result = await service.handle_chat(client_id, body)
    if isinstance(result, QuotaRejection):
        return quota_rejection_response(
            result.message, result.reset_time, result.retry_after_seconds
        )
    return result
