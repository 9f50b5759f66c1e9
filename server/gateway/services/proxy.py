# Upstream proxy: chat completions are forwarded and validated; image
# requests are turned into a direct URL the browser fetches itself.


import asyncio
import re
import time
import unicodedata
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlencode

import httpx
import structlog
from opentelemetry import trace

from gateway.config import Settings
from gateway.exceptions import (
    ConfigurationError,
    GatewayError,
    InvalidInputError,
    MalformedUpstreamResponseError,
    UpstreamAuthError,
    UpstreamHTTPError,
    UpstreamOverloadedError,
    UpstreamTimeoutError,
)
from gateway.schemas import ChatMessage, ChatRequest
from gateway.services.metrics import GatewayMetrics

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

# Anything outside word chars, whitespace, comma and hyphen is dropped,
# except combining marks: \w misses Thai vowel and tone signs.
_PROMPT_DISALLOWED = re.compile(r"[^\w\s,-]")
_COMBINING_MARKS = frozenset({"Mn", "Mc"})
_WHITESPACE_RUN = re.compile(r"\s+")

# Upstream error bodies are logged, truncated to keep log lines bounded.
_MAX_LOGGED_BODY = 2000


@dataclass(frozen=True)
class ImageResult:
    image_url: str
    sanitized_prompt: str


def _keep_combining_mark(match: re.Match[str]) -> str:
    char = match.group()
    return char if unicodedata.category(char) in _COMBINING_MARKS else ""


def sanitize_prompt(prompt: str) -> str:
    """Strip disallowed characters, collapse whitespace runs, trim.

    >>> sanitize_prompt("a cat! @#$ sitting, on-a-mat")
    'a cat sitting, on-a-mat'
    """
    cleaned = _PROMPT_DISALLOWED.sub(_keep_combining_mark, prompt)
    return _WHITESPACE_RUN.sub(" ", cleaned).strip()


def build_image_url(prompt: str, settings: Settings) -> str:
    """Deterministic image URL for an already-sanitized prompt."""
    params = urlencode(
        {
            "width": settings.image_width,
            "height": settings.image_height,
            "nologo": str(settings.image_nologo).lower(),
            "enhance": str(settings.image_enhance).lower(),
        }
    )
    return f"{settings.image_base_url.rstrip('/')}/{quote(prompt, safe='')}?{params}"


def map_upstream_status(status_code: int) -> GatewayError:
    """Translate a non-2xx upstream status into the gateway taxonomy."""
    if status_code == 401:
        return UpstreamAuthError(status_code)
    if status_code == 429:
        return UpstreamOverloadedError(status_code)
    if status_code == 400:
        return InvalidInputError(
            "Upstream rejected the request (HTTP 400)", upstream_status=status_code
        )
    return UpstreamHTTPError(status_code)


def validate_completion(data: Any) -> dict[str, Any]:
    """Require at least one choice carrying a message."""
    if not isinstance(data, dict):
        raise MalformedUpstreamResponseError("body is not a JSON object")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise MalformedUpstreamResponseError("no choices")
    if not any(isinstance(c, dict) and c.get("message") for c in choices):
        raise MalformedUpstreamResponseError("no choice carries a message")
    return data


class UpstreamProxy:
    """Forwards chat requests upstream and builds image URLs.

    One chat request is exactly one upstream call: no retries. The shared
    httpx client is owned by the caller (created in the app lifespan).
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        metrics: GatewayMetrics | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._metrics = metrics

    @property
    def chat_url(self) -> str:
        return f"{self._settings.upstream_base_url.rstrip('/')}/chat/completions"

    async def chat(self, request: ChatRequest, timeout: float | None = None) -> dict[str, Any]:
        """Forward a chat completion and return the upstream payload unchanged."""
        api_key = self._settings.upstream_api_key.get_secret_value()
        if not api_key:
            self._record_error(ConfigurationError.category.value)
            raise ConfigurationError("UPSTREAM_API_KEY")
        if not request.messages:
            self._record_error(InvalidInputError.category.value)
            raise InvalidInputError("messages array required", message_key="messages_required")

        with tracer.start_as_current_span("upstream_chat") as span:
            span.set_attribute("model", self._settings.chat_model)
            span.set_attribute("messages", len(request.messages))
            start = time.perf_counter()
            try:
                data = await self._send_chat(api_key, request.messages, timeout)
            except GatewayError as exc:
                span.set_attribute("error_category", exc.category.value)
                self._record(start, exc.category.value)
                raise
            self._record(start, None)
            return data

    async def _send_chat(
        self, api_key: str, messages: list[ChatMessage], timeout: float | None
    ) -> dict[str, Any]:
        deadline = timeout or self._settings.upstream_timeout_seconds
        payload = {
            "model": self._settings.chat_model,
            "messages": [m.model_dump(exclude_none=True) for m in messages],
            "max_tokens": self._settings.max_tokens,
            "temperature": self._settings.temperature,
            "stream": False,
        }

        try:
            response = await asyncio.wait_for(
                self._client.post(
                    self.chat_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {api_key}"},
                    timeout=deadline,
                ),
                timeout=deadline,
            )
        except (TimeoutError, httpx.TimeoutException):
            logger.warning("upstream_timeout", url=self.chat_url, timeout_s=deadline)
            raise UpstreamTimeoutError(deadline) from None
        except httpx.HTTPError as e:
            logger.error("upstream_transport_failed", url=self.chat_url, error=str(e))
            raise UpstreamHTTPError(None, reason=type(e).__name__) from e

        if not response.is_success:
            logger.error(
                "upstream_error_response",
                status=response.status_code,
                body=response.text[:_MAX_LOGGED_BODY],
            )
            raise map_upstream_status(response.status_code)

        try:
            data = response.json()
        except ValueError:
            logger.error(
                "upstream_invalid_json",
                status=response.status_code,
                body=response.text[:_MAX_LOGGED_BODY],
            )
            raise MalformedUpstreamResponseError("body is not valid JSON") from None

        validate_completion(data)
        logger.info(
            "upstream_chat_completed",
            status=response.status_code,
            model=data.get("model", self._settings.chat_model),
            choices=len(data["choices"]),
        )
        return data

    def build_image(self, prompt: str | None) -> ImageResult:
        """Sanitize the prompt and build the image URL. No network call."""
        if not prompt or not prompt.strip():
            self._record_error(InvalidInputError.category.value)
            raise InvalidInputError("prompt is required", message_key="prompt_required")

        clean = sanitize_prompt(prompt)
        if not clean:
            self._record_error(InvalidInputError.category.value)
            raise InvalidInputError(
                "prompt is empty after sanitization", message_key="prompt_required"
            )

        url = build_image_url(clean, self._settings)
        logger.info("image_url_built", prompt_length=len(clean))
        if self._metrics:
            self._metrics.record_image()
        return ImageResult(image_url=url, sanitized_prompt=clean)

    def _record(self, start: float, category: str | None) -> None:
        if self._metrics:
            self._metrics.record_chat((time.perf_counter() - start) * 1000, category)

    def _record_error(self, category: str) -> None:
        if self._metrics:
            self._metrics.record_error(category)
