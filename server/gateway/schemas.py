# ─────────────────────────────────────────────────────────────────────────────
# Pydantic v2 Request / Response Schemas
# ─────────────────────────────────────────────────────────────────────────────
# Response field names follow the wire format the frontend already reads
# (imageUrl, resetTime, totalActiveIPs) via serialization aliases.
# ─────────────────────────────────────────────────────────────────────────────


from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """One chat turn. Unknown keys (e.g. ``name``) pass through to upstream."""

    model_config = ConfigDict(extra="allow")

    role: str = Field(..., min_length=1, description="system, user, or assistant")
    content: str | list[dict[str, Any]] = Field(..., description="Message body")


class ChatRequest(BaseModel):
    """Incoming chat completion request.

    An empty list is accepted here and rejected by the proxy, so a missing
    upstream credential is reported before bad input.
    """

    messages: list[ChatMessage] = Field(default_factory=list)


class ImageRequest(BaseModel):
    """Incoming image generation request."""

    prompt: str = Field("", max_length=1000, description="Free-text image description")


class ImageResponse(BaseModel):
    """Direct image URL; the browser fetches the image itself."""

    success: bool = True
    image_url: str = Field(..., serialization_alias="imageUrl")
    prompt: str = Field(..., description="Sanitized prompt embedded in the URL")


class QuotaRejectionResponse(BaseModel):
    """429 body for a client over its quota."""

    error: str
    category: str = "rejected_by_quota"
    reset_time: str = Field(..., serialization_alias="resetTime", description="ISO-8601")


class ErrorResponse(BaseModel):
    """Body of every GatewayError response."""

    error: str
    category: str
    type: str


class HealthResponse(BaseModel):
    """Liveness probe: minimal, near-zero cost."""

    status: str = "OK"
    timestamp: str
    version: str


class StatsResponse(BaseModel):
    """Usage statistics for operators."""

    total_active_ips: int = Field(..., serialization_alias="totalActiveIPs")
    server_uptime: float = Field(..., serialization_alias="serverUptime")
    memory_usage: dict[str, Any] = Field(default_factory=dict, serialization_alias="memoryUsage")
    environment: str
    quota: dict[str, Any] = Field(default_factory=dict)
    requests: dict[str, Any] = Field(default_factory=dict)
