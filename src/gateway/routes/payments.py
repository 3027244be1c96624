"""Payment status endpoint.

Lets the success page poll the status of a checkout session. Lookups are
cached per session for 30 seconds to spare the Stripe API.
"""

import threading
import time
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from enrollment.services.stripe_service import StripeService, StripeServiceError
from enrollment.utils.logging import get_logger
from gateway.dependencies import get_stripe
from gateway.models.payments import PaymentStatusRequest, PaymentStatusResponse

logger = get_logger(__name__)

router = APIRouter(tags=["payments"])

STATUS_CACHE_TTL_SECONDS = 30.0


class PaymentStatusCache:
    """Per-session cache of payment-status responses."""

    def __init__(self, ttl_seconds: float = STATUS_CACHE_TTL_SECONDS) -> None:
        self._ttl = ttl_seconds
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            stored_at, value = entry
            if time.monotonic() - stored_at >= self._ttl:
                del self._entries[session_id]
                return None
            return value

    def set(self, session_id: str, value: dict[str, Any]) -> None:
        with self._lock:
            self._entries[session_id] = (time.monotonic(), value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


status_cache = PaymentStatusCache()


@router.post(
    "/payment-status",
    summary="Get the payment status of a checkout session",
    response_model=PaymentStatusResponse,
    responses={
        400: {"description": "Unknown session ID"},
        502: {"description": "Stripe API error"},
    },
)
async def get_payment_status(
    request: PaymentStatusRequest,
    stripe_service: StripeService = Depends(get_stripe),
) -> PaymentStatusResponse | JSONResponse:
    cached = status_cache.get(request.sessionId)
    if cached is not None:
        logger.info("Using cached status for session %s", request.sessionId)
        return PaymentStatusResponse(**cached)

    try:
        session = await stripe_service.retrieve_checkout_session(request.sessionId)
    except StripeServiceError as e:
        if e.stripe_error_code == "resource_missing":
            return JSONResponse({"error": "Invalid session ID"}, status_code=400)
        return JSONResponse({"error": str(e)}, status_code=502)

    details = session.get("customer_details") or {}
    response = PaymentStatusResponse(
        status=session.get("payment_status") or "unknown",
        customerEmail=session.get("customer_email") or details.get("email"),
        amount=session.get("amount_total"),
        currency=session.get("currency"),
    )
    status_cache.set(request.sessionId, response.model_dump())
    return response
