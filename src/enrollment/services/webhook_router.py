"""Verify, dispatch and time-bound Stripe webhook deliveries.

The router turns a raw delivery into a transport-neutral ``WebhookReply``:

- missing signature header or bad signature: 400, plain text
- webhook secret not configured: 500
- handled: 200 ``{"received": true}``
- handler raised: 500 ``{"received": true, "error": "Internal server error"}``
- handler still running after the timeout: 202 with an ``error`` field

A timed-out handler is not cancelled. It keeps running as a background task
held in ``_background_tasks`` and its outcome is logged when it finishes.
"""

import asyncio
import logging

from enrollment.config import ConfigurationError, get_settings
from enrollment.models.enums import ProcessingResult
from enrollment.models.stripe_webhook import (
    HandlerOutcome,
    PaymentEvent,
    WebhookAck,
    WebhookReply,
)
from enrollment.services.stripe_service import (
    StripeService,
    StripeServiceError,
    get_stripe_service,
)
from enrollment.services.webhook_handler import WebhookHandler
from enrollment.utils.logging import log_webhook_event

logger = logging.getLogger(__name__)

# Strong references to in-flight handler tasks so they are not garbage collected
_background_tasks: set[asyncio.Task] = set()

TIMEOUT_MESSAGE = (
    "Processing continues in the background; the outcome is recorded in the logs"
)


def pending_task_count() -> int:
    return len(_background_tasks)


async def drain_background_tasks() -> None:
    """Wait for every in-flight handler task (for shutdown and tests)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


def _ack(status_code: int, **fields: str) -> WebhookReply:
    body = WebhookAck(received=True, **fields).model_dump(exclude_none=True)
    return WebhookReply(status_code=status_code, body=body)


def _on_task_done(event: PaymentEvent, task: "asyncio.Task[HandlerOutcome]") -> None:
    _background_tasks.discard(task)

    if task.cancelled():
        log_webhook_event(logger, event.type, event.id, result="error", error="cancelled")
        return

    exc = task.exception()
    if exc is not None:
        logger.error(
            "Webhook handler for %s (%s) raised",
            event.type,
            event.id,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        log_webhook_event(logger, event.type, event.id, result="error", error=str(exc))
        return

    outcome = task.result()
    batch = outcome.batch
    log_webhook_event(
        logger,
        event.type,
        event.id,
        session_id=event.data_object.get("id"),
        contact_id=outcome.contact_id,
        result=outcome.result.value,
        error=outcome.message if outcome.result is ProcessingResult.ERROR else None,
        succeeded=batch.succeeded if batch else None,
        failed=batch.failed if batch else None,
    )


class WebhookRouter:
    """Entry point for Stripe webhook deliveries.

    Usage:
        router = WebhookRouter()
        reply = await router.handle(raw_body, request.headers.get("stripe-signature"))
    """

    def __init__(
        self,
        *,
        handler: WebhookHandler | None = None,
        stripe_service: StripeService | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._handler = handler
        self._stripe = stripe_service
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else get_settings().webhook_timeout_seconds
        )

    def _get_handler(self) -> WebhookHandler:
        if self._handler is None:
            self._handler = WebhookHandler()
        return self._handler

    def _get_stripe(self) -> StripeService:
        if self._stripe is None:
            self._stripe = get_stripe_service()
        return self._stripe

    async def handle(self, raw_body: bytes, signature: str | None) -> WebhookReply:
        if not signature:
            logger.warning("Webhook received without signature header")
            return WebhookReply(
                status_code=400, text="Webhook Error: Missing signature header"
            )

        try:
            event_data = self._get_stripe().verify_webhook_signature(raw_body, signature)
        except ConfigurationError as e:
            logger.error("Webhook secret not configured: %s", e)
            return WebhookReply(
                status_code=500, body={"error": "Webhook secret not configured"}
            )
        except StripeServiceError as e:
            return WebhookReply(status_code=400, text=f"Webhook Error: {e}")

        event = PaymentEvent.from_stripe(event_data)
        log_webhook_event(logger, event.type, event.id, result="received")

        # create_task copies the current context, so the correlation ID follows
        task = asyncio.create_task(self._get_handler().dispatch(event))
        _background_tasks.add(task)
        task.add_done_callback(lambda t: _on_task_done(event, t))

        done, _ = await asyncio.wait({task}, timeout=self._timeout)
        if task not in done:
            log_webhook_event(
                logger,
                event.type,
                event.id,
                result="timeout",
                timeout_seconds=self._timeout,
            )
            return _ack(
                202, error="Webhook processing timed out", message=TIMEOUT_MESSAGE
            )

        if task.exception() is not None:
            return _ack(500, error="Internal server error")
        return _ack(200)
