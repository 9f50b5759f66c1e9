# ─────────────────────────────────────────────────────────────────────────────
# Test Fixtures — shared across all tests
# ─────────────────────────────────────────────────────────────────────────────

import os
from collections.abc import Iterator

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from gateway.config import Settings, get_settings
from gateway.main import create_app, init_app_state
from gateway.rate_limit import configure_burst_limit, limiter

UPSTREAM_BASE_URL = "https://upstream.test/openai/v1"
IMAGE_BASE_URL = "https://images.test/prompt"
TEST_API_KEY = "gsk-test-key"


def completion_payload(content: str = "สวัสดีครับ") -> dict:
    """Minimal OpenAI-compatible chat completion body."""
    return {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "model": "llama3-70b-8192",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 5, "completion_tokens": 3, "total_tokens": 8},
    }


@pytest.fixture
def isolated_state() -> Iterator[None]:
    """Cached settings, the burst limit and slowapi counters are process-global."""
    get_settings.cache_clear()
    configure_burst_limit(None)
    limiter.reset()
    yield
    get_settings.cache_clear()
    configure_burst_limit(None)
    limiter.reset()


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing: fake upstreams, small quota."""
    return Settings(
        upstream_base_url=UPSTREAM_BASE_URL,
        upstream_api_key=TEST_API_KEY,
        image_base_url=IMAGE_BASE_URL,
        quota_limit=3,
        quota_window_seconds=3600,
        quota_sweep_interval_seconds=0,
        upstream_timeout_seconds=2,
        message_locale="en",
        environment="test",
        log_json=False,
        log_level="DEBUG",
    )


@pytest.fixture
def upstream() -> Iterator[respx.MockRouter]:
    """respx router for the fake chat upstream. Unmocked calls fail the test."""
    with respx.mock(base_url=UPSTREAM_BASE_URL, assert_all_called=False) as mock:
        yield mock


def _build_client(settings: Settings, env: dict[str, str] | None = None, **kwargs) -> TestClient:
    """FastAPI TestClient with app.state built from ``settings``.

    TestClient is not entered as a context manager, so the lifespan does not
    run; init_app_state wires the same object graph the lifespan would.
    """
    env_overrides = {"LOG_JSON": "false", "LOG_LEVEL": "DEBUG", "ALLOWED_ORIGINS": "*"}
    env_overrides.update(env or {})
    for k, v in env_overrides.items():
        os.environ[k] = v

    try:
        get_settings.cache_clear()
        app = create_app()
        init_app_state(app, settings, httpx.AsyncClient())
        return TestClient(app, **kwargs)
    finally:
        for k in env_overrides:
            os.environ.pop(k, None)
        get_settings.cache_clear()


@pytest.fixture
def make_client(isolated_state):
    """Factory fixture: make_client(settings, env={...}, raise_server_exceptions=False)."""
    return _build_client


@pytest.fixture
def client(test_settings: Settings, isolated_state) -> TestClient:
    return _build_client(test_settings)


@pytest.fixture
def completion():
    """Factory fixture for upstream completion bodies."""
    return completion_payload
