"""Webhook endpoint for Stripe events.

This endpoint does NOT require authentication: payloads are signed by Stripe
and verified by the webhook router before any processing.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from enrollment.services.webhook_router import WebhookRouter
from enrollment.utils.logging import get_logger
from gateway.dependencies import get_webhook_router

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post(
    "/webhooks/stripe",
    summary="Receive Stripe webhook events",
    description="""
Endpoint for Stripe webhook events. Handles:
- checkout.session.completed: upserts the buyer and enrolls them in their courses
- invoice.paid: records subscription and payment-plan progress
- customer.subscription.created/updated/deleted: records subscription state

Other event types are acknowledged without side effects.

Always answers with `{"received": true, ...}` once the signature is valid, so
Stripe does not redeliver because of an internal error. Processing that takes
longer than the timeout continues in the background and answers 202.
""",
    responses={
        200: {"description": "Event processed", "content": {"application/json": {}}},
        202: {"description": "Event accepted, processing continues"},
        400: {"description": "Missing header or invalid signature", "content": {"text/plain": {}}},
        500: {"description": "Processing failed or webhook secret missing"},
    },
)
async def handle_stripe_webhook(
    request: Request,
    webhook_router: WebhookRouter = Depends(get_webhook_router),
) -> Response:
    """Hand the raw body to the webhook router; it must not be parsed first."""
    payload = await request.body()
    reply = await webhook_router.handle(payload, request.headers.get("Stripe-Signature"))

    if reply.text is not None:
        return PlainTextResponse(reply.text, status_code=reply.status_code)
    return JSONResponse(reply.body or {}, status_code=reply.status_code)
