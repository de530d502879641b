"""Structured logging configuration using structlog.

Console output for local development, JSON for production, plus a redaction
processor for credentials and a timing helper.
"""

import logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

REDACTED = "***REDACTED***"

DEFAULT_SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "x-api-key",
        "x_api_key",
        "authorization",
        "password",
        "secret",
        "access_token",
        "refresh_token",
        "token",
        "key",
    }
)

_sensitive_keys: set[str] = set(DEFAULT_SENSITIVE_KEYS)


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    if lowered in _sensitive_keys:
        return True
    # Token counts (total_tokens, input_tokens, ...) are metrics, not secrets
    if lowered.endswith("tokens"):
        return False
    return "password" in lowered or "secret" in lowered or lowered.endswith("api_key")


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and _is_sensitive(k) else _redact(v)
            for k, v in value.items()
        }
    return value


def filter_sensitive_data(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Processor that masks sensitive keys, including inside nested dicts."""
    for key in list(event_dict.keys()):
        if key == "event":
            continue
        if _is_sensitive(key):
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact(event_dict[key])
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    sensitive_keys: list[str] | None = None,
) -> None:
    """Configure structlog with appropriate processors and renderer.

    Args:
        log_level: Logging level (INFO, DEBUG, etc.)
        json_output: True for JSON lines, False for colored console output
        sensitive_keys: Extra keys to redact on top of the defaults
    """
    _sensitive_keys.clear()
    _sensitive_keys.update(DEFAULT_SENSITIVE_KEYS)
    if sensitive_keys:
        _sensitive_keys.update(k.lower() for k in sensitive_keys)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        filter_sensitive_data,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def configure_from_settings() -> None:
    """Apply the logging section of the global settings."""
    from conduit.config import settings

    configure_logging(
        log_level="DEBUG" if settings.debug else settings.log_level,
        json_output=settings.log_json,
        sensitive_keys=settings.redact_keys,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance."""
    return structlog.get_logger(name)


@contextmanager
def log_performance(
    name: str,
    logger: Any = None,
    **extra: Any,
) -> Iterator[dict[str, Any]]:
    """
    Time a block and log it as a ``performance`` event.

    The yielded dict can be filled with extra fields from inside the block.

    Examples:
        >>> with log_performance("summarize", messages=12) as perf:
        ...     perf["summary_chars"] = len(summary)
    """
    log = logger or get_logger("conduit.performance")
    fields: dict[str, Any] = dict(extra)
    start = time.perf_counter()
    try:
        yield fields
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        log.info("performance", operation=name, duration_ms=round(duration_ms, 2), **fields)


__all__ = [
    "REDACTED",
    "configure_logging",
    "configure_from_settings",
    "filter_sensitive_data",
    "get_logger",
    "log_performance",
]
