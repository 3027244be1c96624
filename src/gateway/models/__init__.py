"""API-specific request/response models.

Modules:
- payments: payment-status request and response
- admin: enrollment recovery request and response

Domain models (CheckoutMetadata, SuccessPageResult, ...) live in
enrollment.models and are reused here where appropriate.
"""

from gateway.models.admin import RecoverEnrollmentRequest, RecoverEnrollmentResponse
from gateway.models.payments import PaymentStatusRequest, PaymentStatusResponse

__all__ = [
    "PaymentStatusRequest",
    "PaymentStatusResponse",
    "RecoverEnrollmentRequest",
    "RecoverEnrollmentResponse",
]
