# ─────────────────────────────────────────────────────────────────────────────
# Tests — GatewayService (gate → proxy composition)
# ─────────────────────────────────────────────────────────────────────────────

from datetime import datetime

import httpx
import pytest

from gateway.config import Settings
from gateway.exceptions import InvalidInputError, UpstreamAuthError
from gateway.quota import QuotaGate
from gateway.schemas import ChatRequest, ImageRequest
from gateway.services.gateway import GatewayService, QuotaRejection, isoformat_utc
from gateway.services.metrics import GatewayMetrics
from gateway.services.proxy import ImageResult, UpstreamProxy

MESSAGES = ChatRequest(messages=[{"role": "user", "content": "hi"}])


@pytest.fixture
def metrics() -> GatewayMetrics:
    return GatewayMetrics()


@pytest.fixture
def gate(test_settings: Settings) -> QuotaGate:
    return QuotaGate(limit=test_settings.quota_limit, window_seconds=60)


@pytest.fixture
async def service(test_settings: Settings, gate: QuotaGate, metrics: GatewayMetrics):
    async with httpx.AsyncClient() as client:
        proxy = UpstreamProxy(test_settings, client, metrics=metrics)
        yield GatewayService(gate, proxy, test_settings, metrics=metrics)


class TestHandleChat:
    async def test_admitted_request_is_forwarded(self, service, upstream, completion):
        upstream.post("/chat/completions").mock(return_value=httpx.Response(200, json=completion()))

        result = await service.handle_chat("1.2.3.4", MESSAGES)

        assert result == completion()

    async def test_rejects_after_limit_without_calling_upstream(
        self, service, upstream, completion, gate
    ):
        route = upstream.post("/chat/completions").mock(
            return_value=httpx.Response(200, json=completion())
        )
        for _ in range(gate.limit):
            await service.handle_chat("1.2.3.4", MESSAGES)

        result = await service.handle_chat("1.2.3.4", MESSAGES)

        assert isinstance(result, QuotaRejection)
        assert result.http_status == 429
        assert route.call_count == gate.limit

    async def test_rejection_reset_time_matches_record(self, service, upstream, completion, gate):
        upstream.post("/chat/completions").mock(return_value=httpx.Response(200, json=completion()))
        for _ in range(gate.limit):
            await service.handle_chat("c", MESSAGES)

        result = await service.handle_chat("c", MESSAGES)

        stored = gate.get("c").window_reset_at
        assert result.reset_at == stored
        assert datetime.fromisoformat(result.reset_time) == stored
        assert result.reset_time.endswith("Z")
        assert result.message == "Usage limit exceeded. Please wait until the reset time."
        assert 1 <= result.retry_after_seconds <= 60

    async def test_proxy_errors_propagate(self, service, upstream):
        upstream.post("/chat/completions").mock(return_value=httpx.Response(401))
        with pytest.raises(UpstreamAuthError):
            await service.handle_chat("c", MESSAGES)

    async def test_invalid_request_still_spends_quota(self, service, gate):
        with pytest.raises(InvalidInputError):
            await service.handle_chat("c", ChatRequest(messages=[]))
        assert gate.get("c").count == 1

    async def test_metrics_count_decisions(self, service, upstream, completion, metrics, gate):
        upstream.post("/chat/completions").mock(return_value=httpx.Response(200, json=completion()))
        for _ in range(gate.limit + 2):
            await service.handle_chat("c", MESSAGES)

        data = metrics.to_dict()
        assert data["quota_admitted"] == gate.limit
        assert data["quota_rejected"] == 2


class TestHandleImage:
    async def test_returns_image_result(self, service):
        result = service.handle_image("c", ImageRequest(prompt="a red fox"))
        assert isinstance(result, ImageResult)
        assert result.sanitized_prompt == "a red fox"

    async def test_empty_prompt_raises(self, service):
        with pytest.raises(InvalidInputError):
            service.handle_image("c", ImageRequest(prompt=""))

    async def test_shares_quota_with_chat(self, service, gate):
        for _ in range(gate.limit):
            service.handle_image("c", ImageRequest(prompt="fox"))

        assert isinstance(service.handle_image("c", ImageRequest(prompt="fox")), QuotaRejection)
        assert isinstance(await service.handle_chat("c", MESSAGES), QuotaRejection)


def test_isoformat_utc_round_trips():
    moment = datetime.fromisoformat("2026-03-01T10:20:30.123456+00:00")
    assert isoformat_utc(moment) == "2026-03-01T10:20:30.123456Z"
    assert datetime.fromisoformat(isoformat_utc(moment)) == moment
