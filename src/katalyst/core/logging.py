"""Structured logging for Katalyst.

Uses structlog's ProcessorFormatter to transparently upgrade all existing
``logging.getLogger(__name__)`` call sites. Zero changes needed at call sites.

Two output formats:
- ``text``: Colored, human-readable console output (dev default)
- ``json``: Machine-parseable JSON lines (production / log aggregation)

The signed-in user and OTel trace context are injected automatically via
processors that read from a ContextVar and the current OTel span.

Security, request, auth and token events go through the ``log_*`` helpers
below so their message prefixes stay stable for log searches.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from opentelemetry import trace

# ---------------------------------------------------------------------------
# User context (asyncio-safe via ContextVar)
# ---------------------------------------------------------------------------

_user_context: ContextVar[str | None] = ContextVar("katalyst_user", default=None)


def set_user_context(user_id: str | None) -> None:
    """Set the user id for the current async context."""
    _user_context.set(user_id)


def get_user_context() -> str | None:
    """Get the user id for the current async context."""
    return _user_context.get()


# ---------------------------------------------------------------------------
# Structlog processors
# ---------------------------------------------------------------------------


def add_user_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``user_id`` from the ContextVar unless the record already has one."""
    event_dict.setdefault("user_id", _user_context.get())
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``trace_id`` and ``span_id`` from the current OTel span."""
    span = trace.get_current_span()
    ctx = span.get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = "0" * 32
        event_dict["span_id"] = "0" * 16
    return event_dict


# ---------------------------------------------------------------------------
# Noise suppression
# ---------------------------------------------------------------------------

_NOISE_LOGGERS = (
    "uvicorn.access",
    "httpx",
    "httpcore",
)


def _build_processors(
    time_fmt: str,
) -> list[structlog.types.Processor]:
    """Build the pre-chain processor list with the given timestamp format."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_user_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Configure structured logging for the process.

    Parameters
    ----------
    level:
        Root log level (e.g. "DEBUG", "INFO", "WARNING"). Production
        deployments typically run at "WARNING" so only warnings and errors
        are emitted.
    fmt:
        Output format, ``"text"`` for colored console, ``"json"`` for JSON lines.
    """
    if fmt == "json":
        processors = _build_processors(time_fmt="iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        processors = _build_processors(time_fmt="%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    # Remove existing handlers to avoid duplicate output on reconfiguration
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Configure structlog itself (for direct structlog.get_logger() usage)
    structlog.configure(
        processors=[
            *processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Event helpers
# ---------------------------------------------------------------------------

_events = logging.getLogger("katalyst.events")


def _extra(user_id: str | None, data: dict[str, Any] | None) -> dict[str, Any]:
    extra: dict[str, Any] = {"data": data or {}}
    if user_id is not None:
        extra["user_id"] = user_id
    return extra


def log_security_event(event: str, data: dict[str, Any] | None = None) -> None:
    """Record a security-relevant event (unauthorised access, bad CSRF state)."""
    _events.warning("SECURITY_EVENT: %s", event, extra=_extra(None, data))


def log_api_request(
    method: str, path: str, user_id: str | None = None, duration_ms: float | None = None
) -> None:
    """Record a completed API request."""
    data: dict[str, Any] = {"method": method, "path": path}
    if duration_ms is not None:
        data["duration_ms"] = round(duration_ms, 1)
    _events.info("API_REQUEST: %s %s", method, path, extra=_extra(user_id, data))


def log_api_error(
    method: str, path: str, error: BaseException | str, user_id: str | None = None
) -> None:
    """Record an API request that failed."""
    data = {"method": method, "path": path, "error": str(error)}
    _events.error("API_ERROR: %s %s", method, path, extra=_extra(user_id, data))


def log_auth_event(event: str, user_id: str | None = None, **data: Any) -> None:
    """Record a sign-in / sign-out lifecycle event."""
    _events.info("AUTH_EVENT: %s", event, extra=_extra(user_id, data))


def log_auth_error(event: str, user_id: str | None = None, **data: Any) -> None:
    """Record a sign-in failure."""
    _events.error("AUTH_ERROR: %s", event, extra=_extra(user_id, data))


def log_token_event(event: str, user_id: str | None = None, **data: Any) -> None:
    """Record a token lifecycle event (refresh, fallback)."""
    _events.info("TOKEN_EVENT: %s", event, extra=_extra(user_id, data))


def log_token_error(event: str, user_id: str | None = None, **data: Any) -> None:
    """Record a token lifecycle failure."""
    _events.error("TOKEN_ERROR: %s", event, extra=_extra(user_id, data))
