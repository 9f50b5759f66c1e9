# ─────────────────────────────────────────────────────────────────────────────
# Logging Configuration — structlog JSON / console
# ─────────────────────────────────────────────────────────────────────────────
# Every line carries the gateway's environment and version. The upstream
# credential must never reach a log sink, so header-like keys are redacted
# before rendering.
# ─────────────────────────────────────────────────────────────────────────────

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

REDACTED = "[redacted]"

_SECRET_KEYS = frozenset({"authorization", "api_key", "upstream_api_key", "groq_api_key"})

# Libraries that log every request line at INFO; the gateway logs its own events.
_CHATTY_LOGGERS = ("httpx", "httpcore")


def redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Replace credential values, including inside a logged ``headers`` dict."""
    for key in event_dict.keys() & _SECRET_KEYS:
        event_dict[key] = REDACTED
    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            k: REDACTED if k.lower() in _SECRET_KEYS else v for k, v in headers.items()
        }
    return event_dict


def service_context(environment: str, version: str) -> structlog.types.Processor:
    """Processor stamping deployment context onto each event."""

    def add_context(
        _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        event_dict.setdefault("service", "chat-image-gateway")
        event_dict.setdefault("environment", environment)
        event_dict.setdefault("version", version)
        return event_dict

    return add_context


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    environment: str = "development",
    version: str = "",
) -> None:
    """Configure structlog, and route stdlib loggers (uvicorn, httpx) through it."""
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        service_context(environment, version),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer(ensure_ascii=False)
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )

    # foreign_pre_chain only applies to records from stdlib loggers.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper()))

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
