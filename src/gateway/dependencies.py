"""FastAPI dependency injection providers for the gateway.

Service instances are created lazily and cached with @lru_cache. Routes
depend on these providers so tests can swap them through
``app.dependency_overrides``.

Service Dependency Graph:
    StripeService, ClickFunnelsClient, IdempotencyTracker (singletons)
        └── EnrollmentService
                ├── WebhookHandler ── WebhookRouter
                └── SuccessPageHandler

Testing:
    Use reset_services() to clear cached instances between tests.
"""

import hmac
from functools import lru_cache

from fastapi import Header

from enrollment.config import SecretName, get_secret, reset_settings
from enrollment.models.errors import ErrorCode, GatewayError
from enrollment.services.clickfunnels_client import (
    ClickFunnelsClient,
    get_clickfunnels_client,
    reset_clickfunnels_client,
)
from enrollment.services.enrollment_service import reset_enrollment_service
from enrollment.services.enrollment_tracker import reset_enrollment_tracker
from enrollment.services.stripe_service import (
    StripeService,
    get_stripe_service,
    reset_stripe_service,
)
from enrollment.services.success_handler import (
    SuccessPageHandler,
    get_success_page_handler,
    reset_success_page_handler,
)
from enrollment.services.webhook_router import WebhookRouter


@lru_cache
def get_webhook_router() -> WebhookRouter:
    """Get cached WebhookRouter instance."""
    return WebhookRouter()


def get_success_handler() -> SuccessPageHandler:
    return get_success_page_handler()


def get_stripe() -> StripeService:
    return get_stripe_service()


def get_clickfunnels() -> ClickFunnelsClient:
    return get_clickfunnels_client()


def require_admin(authorization: str | None = Header(default=None)) -> None:
    """Check the ``Authorization: Bearer <admin key>`` header.

    Raises:
        GatewayError: UNAUTHORIZED if the header is missing or wrong.
        ConfigurationError: If no admin key is configured.
    """
    expected = get_secret(SecretName.ADMIN_API_KEY)
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise GatewayError(ErrorCode.UNAUTHORIZED)
    if not hmac.compare_digest(token.strip().encode(), expected.encode()):
        raise GatewayError(ErrorCode.UNAUTHORIZED)


def reset_services() -> None:
    """Clear all cached service instances (for testing)."""
    get_webhook_router.cache_clear()
    reset_success_page_handler()
    reset_enrollment_service()
    reset_enrollment_tracker()
    reset_clickfunnels_client()
    reset_stripe_service()
    reset_settings()
