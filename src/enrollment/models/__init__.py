"""Pydantic models for the checkout gateway."""

from .contact import Contact, ContactUpsert, UpsertResult
from .enrollment import (
    EnrollmentBatchResult,
    EnrollmentResult,
    IdempotencyKey,
)
from .enums import (
    EnrollmentHandledBy,
    EnrollmentStatus,
    EventType,
    OriginationSource,
    PaymentType,
    ProcessingResult,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    ErrorCode,
    ErrorResponse,
    GatewayError,
)
from .metadata import CURRENT_METADATA_VERSION, CheckoutMetadata, parse_course_ids
from .stripe_webhook import HandlerOutcome, PaymentEvent, WebhookAck, WebhookReply
from .success import SuccessPageResult

__all__ = [
    # Contact
    "Contact",
    "ContactUpsert",
    "UpsertResult",
    # Enrollment
    "EnrollmentBatchResult",
    "EnrollmentResult",
    "IdempotencyKey",
    # Enums
    "EnrollmentHandledBy",
    "EnrollmentStatus",
    "EventType",
    "OriginationSource",
    "PaymentType",
    "ProcessingResult",
    # Errors
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "ErrorCode",
    "ErrorResponse",
    "GatewayError",
    # Metadata
    "CURRENT_METADATA_VERSION",
    "CheckoutMetadata",
    "parse_course_ids",
    # Webhook
    "HandlerOutcome",
    "PaymentEvent",
    "WebhookAck",
    "WebhookReply",
    # Success page
    "SuccessPageResult",
]
