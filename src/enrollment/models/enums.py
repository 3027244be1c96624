"""Enumerations shared across the gateway."""

from enum import Enum


class PaymentType(str, Enum):
    """How the buyer pays for a product."""

    ONE_TIME = "one_time"
    SUBSCRIPTION = "subscription"
    PAYMENT_PLAN = "payment_plan"


class EventType(str, Enum):
    """Stripe event types the webhook router dispatches."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    INVOICE_PAID = "invoice.paid"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class EnrollmentHandledBy(str, Enum):
    """Which path owns enrollment for a checkout session."""

    SUCCESS_PAGE = "success_page"
    WEBHOOK = "webhook"


class ProcessingResult(str, Enum):
    """Outcome of a single webhook event handler."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    DEFERRED = "deferred"
    ERROR = "error"


class EnrollmentStatus(str, Enum):
    """Enrollment outcome recorded on the contact."""

    ENROLLED = "enrolled"
    PARTIAL = "partial"
    FAILED = "failed"


class OriginationSource(str, Enum):
    """Origination source types sent with enrollment creation."""

    API = "api"
    WEBHOOK = "stripe_webhook"
    SUCCESS_PAGE = "success_page"
    MANUAL_RECOVERY = "manual_recovery"
