"""Webhook event and acknowledgement models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enrollment import EnrollmentBatchResult
from .enums import ProcessingResult


class PaymentEvent(BaseModel):
    """A verified Stripe event, reduced to what the handlers read."""

    id: str = Field(..., description="Stripe event ID (evt_xxx)")
    type: str = Field(..., description="Stripe event type")
    data_object: dict[str, Any] = Field(
        default_factory=dict, description="event.data.object"
    )
    created: int | None = None

    @classmethod
    def from_stripe(cls, event: dict[str, Any]) -> "PaymentEvent":
        data = event.get("data") or {}
        return cls(
            id=event.get("id") or "",
            type=event.get("type") or "",
            data_object=dict(data.get("object") or {}),
            created=event.get("created"),
        )


class HandlerOutcome(BaseModel):
    """What an event handler did."""

    result: ProcessingResult
    message: str | None = None
    contact_id: int | None = None
    batch: EnrollmentBatchResult | None = None


class WebhookAck(BaseModel):
    """Acknowledgement body returned to Stripe.

    ``received`` is always true once the signature has been verified, even
    when processing failed, so Stripe does not redeliver for our own bugs.
    """

    model_config = ConfigDict(strict=True)

    received: bool = True
    error: str | None = None
    message: str | None = None


class WebhookReply(BaseModel):
    """Transport-neutral HTTP reply produced by the webhook router."""

    status_code: int
    body: dict[str, Any] | None = None
    text: str | None = None
