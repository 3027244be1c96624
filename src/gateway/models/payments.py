"""API models for the payment-status endpoint."""

from pydantic import BaseModel, ConfigDict, Field


class PaymentStatusRequest(BaseModel):
    """Request to look up the payment status of a checkout session."""

    model_config = ConfigDict(
        strict=True,
        json_schema_extra={"examples": [{"sessionId": "cs_test_a1b2c3"}]},
    )

    sessionId: str = Field(..., min_length=1, description="Stripe checkout session ID")


class PaymentStatusResponse(BaseModel):
    """Payment status of a checkout session. Amount is in minor units (cents)."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "status": "paid",
                    "customerEmail": "jan@example.nl",
                    "amount": 4900,
                    "currency": "eur",
                }
            ]
        },
    )

    status: str
    customerEmail: str | None = None
    amount: int | None = None
    currency: str | None = None
