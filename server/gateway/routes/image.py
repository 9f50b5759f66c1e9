# ─────────────────────────────────────────────────────────────────────────────
# POST /api/generate-image — image URL builder (THIN)
# ─────────────────────────────────────────────────────────────────────────────
# The image is never fetched server-side: the client receives the URL and
# loads it directly, so image bytes never pass through the gateway.
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from gateway.dependencies import get_client_identity, get_gateway_service
from gateway.exceptions import quota_rejection_response
from gateway.rate_limit import burst_limit, limiter
from gateway.schemas import ErrorResponse, ImageRequest, ImageResponse, QuotaRejectionResponse
from gateway.services.gateway import GatewayService, QuotaRejection

router = APIRouter()


@router.post(
    "/api/generate-image",
    response_model=None,
    responses={
        200: {"model": ImageResponse},
        400: {"model": ErrorResponse},
        429: {"model": QuotaRejectionResponse},
    },
)
@limiter.limit(burst_limit)
async def generate_image(
    request: Request,
    body: ImageRequest,
    client_id: str = Depends(get_client_identity),
    service: GatewayService = Depends(get_gateway_service),
) -> JSONResponse:
    result = service.handle_image(client_id, body)
    if isinstance(result, QuotaRejection):
        return quota_rejection_response(
            result.message, result.reset_time, result.retry_after_seconds
        )
    response = ImageResponse(image_url=result.image_url, prompt=result.sanitized_prompt)
    return JSONResponse(content=response.model_dump(by_alias=True))
