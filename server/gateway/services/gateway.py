# Request composition: quota gate first, then the upstream proxy.
# Quota is spent before the body is checked, so malformed requests
# count against the client just like well-formed ones.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from gateway.config import Settings
from gateway.messages import user_message
from gateway.quota import QuotaDecision, QuotaGate
from gateway.schemas import ChatRequest, ImageRequest
from gateway.services.metrics import GatewayMetrics
from gateway.services.proxy import ImageResult, UpstreamProxy

logger = structlog.get_logger(__name__)


def isoformat_utc(moment: datetime) -> str:
    """ISO-8601 with a Z suffix; round-trips through datetime.fromisoformat."""
    return moment.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class QuotaRejection:
    """Policy outcome for a client over its quota. Not an error."""

    message: str
    reset_at: datetime
    retry_after_seconds: int
    http_status: int = 429

    @property
    def reset_time(self) -> str:
        return isoformat_utc(self.reset_at)


class GatewayService:
    """Entry points the HTTP layer calls: handle_chat and handle_image."""

    def __init__(
        self,
        gate: QuotaGate,
        proxy: UpstreamProxy,
        settings: Settings,
        metrics: GatewayMetrics | None = None,
    ) -> None:
        self._gate = gate
        self._proxy = proxy
        self._settings = settings
        self._metrics = metrics

    @property
    def gate(self) -> QuotaGate:
        return self._gate

    async def handle_chat(
        self, client_id: str, request: ChatRequest
    ) -> dict[str, Any] | QuotaRejection:
        """Admit, then forward. Proxy failures propagate as GatewayError."""
        decision = self._check_quota(client_id)
        if not decision.admitted:
            return self._rejection(decision)
        return await self._proxy.chat(request)

    def handle_image(self, client_id: str, request: ImageRequest) -> ImageResult | QuotaRejection:
        """Admit, then build the image URL. Raises InvalidInputError on empty prompt."""
        decision = self._check_quota(client_id)
        if not decision.admitted:
            return self._rejection(decision)
        return self._proxy.build_image(request.prompt)

    def _check_quota(self, client_id: str) -> QuotaDecision:
        decision = self._gate.admit(client_id)
        if self._metrics:
            self._metrics.record_quota(decision.admitted)
        return decision

    def _rejection(self, decision: QuotaDecision) -> QuotaRejection:
        return QuotaRejection(
            message=user_message("rejected_by_quota", self._settings.message_locale),
            reset_at=decision.reset_at,
            retry_after_seconds=decision.retry_after_seconds(),
        )
