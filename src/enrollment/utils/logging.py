"""Logging for the reconciliation pipeline.

Every log line carries the correlation ID of the request that caused it, so a
webhook delivery can be followed from signature check to the last enrollment
attempt, including work that finishes after the HTTP response was sent.

Structured fields go into ``extra`` so they are available to log processors;
the rendered message repeats them as ``key=value`` pairs for plain-text
grepping.

Usage:
    from enrollment.utils.logging import get_logger, log_enrollment_operation

    logger = get_logger(__name__)
    log_enrollment_operation(logger, "enroll", contact_id=42, course_id="eWbLVk",
                             result="success")
"""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any

NO_CORRELATION_ID = "no-correlation-id"

# asyncio tasks copy this at creation, so background work keeps the request's ID
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

_WARNING_RESULTS = frozenset({"duplicate", "skipped", "timeout"})
_ERROR_RESULTS = frozenset({"error", "failed"})


# === Correlation IDs ===


def generate_correlation_id() -> str:
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block, then restore the previous one.

    A missing ID is generated. Yields the ID in effect.
    """
    value = correlation_id or generate_correlation_id()
    token: Token[str | None] = _correlation_id.set(value)
    try:
        yield value
    finally:
        _correlation_id.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Stamps ``correlation_id`` on every record passing through."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class StructuredFormatter(logging.Formatter):
    """Prefixes each line with ``[correlation_id]``."""

    def format(self, record: logging.LogRecord) -> str:
        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id is None:
            correlation_id = get_correlation_id() or NO_CORRELATION_ID
            record.correlation_id = correlation_id
        return f"[{correlation_id}] {super().format(record)}"


def get_logger(name: str) -> logging.Logger:
    """``logging.getLogger`` with the correlation filter attached once."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())
    return logger


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install the structured formatter on the root logger.

    Calling it again only changes the level.
    """
    root = logging.getLogger()
    root.setLevel(level)
    if any(isinstance(h.formatter, StructuredFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(
        StructuredFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)


# === Structured events ===


def _level_for(result: str | None, error: str | None) -> int:
    if error or result in _ERROR_RESULTS:
        return logging.ERROR
    if result in _WARNING_RESULTS:
        return logging.WARNING
    return logging.INFO


def _log(
    logger: logging.Logger,
    headline: str,
    fields: dict[str, Any],
    *,
    hidden: tuple[str, ...] = (),
) -> None:
    """Log ``headline`` with the non-empty ``fields`` as extra and as key=value text.

    Fields named in ``hidden`` go into ``extra`` only.
    """
    context = {k: v for k, v in fields.items() if v is not None and v != ""}
    rendered = [f"{k}={v}" for k, v in context.items() if k not in hidden]
    message = " | ".join([headline, *rendered])
    logger.log(
        _level_for(context.get("result"), context.get("error")), message, extra=context
    )


def log_webhook_event(
    logger: logging.Logger,
    event_type: str,
    event_id: str,
    *,
    session_id: str | None = None,
    contact_id: int | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log one step of a Stripe webhook delivery.

    Args:
        logger: Logger instance
        event_type: Stripe event type (e.g., "checkout.session.completed")
        event_id: Stripe event ID
        session_id: Checkout session or subscription ID if available
        contact_id: ClickFunnels contact ID if resolved
        result: received, success, skipped, deferred, timeout or error
        error: Error message if processing failed
        **extra: Additional context fields
    """
    _log(
        logger,
        f"Webhook event: {event_type} ({event_id})",
        {
            "event_type": event_type,
            "event_id": event_id,
            "result": result,
            "session_id": session_id,
            "contact_id": contact_id,
            "error": error,
            **extra,
        },
        hidden=("event_type", "event_id"),
    )


def log_enrollment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    contact_id: int | None = None,
    course_id: str | None = None,
    transaction_id: str | None = None,
    attempt: int | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a contact or enrollment call with the IDs needed to reconcile it by hand.

    Failures log at error level, skips at warning level.
    """
    _log(
        logger,
        f"Enrollment operation: {operation}",
        {
            "operation": operation,
            "contact_id": contact_id,
            "course_id": course_id,
            "transaction_id": transaction_id,
            "attempt": attempt,
            "result": result,
            "error": error,
            **extra,
        },
        hidden=("operation",),
    )
