"""Stripe service for sessions, subscriptions, invoices and webhooks.

Uses the v10+ StripeClient with its ``_async`` service methods. API keys are
resolved through ``enrollment.config.get_secret`` (environment first, then
SSM Parameter Store). Every method returns plain dicts.
"""

import logging
from functools import lru_cache
from typing import Any

import stripe
from stripe import StripeClient

from enrollment.config import SecretName, get_secret
from enrollment.models.metadata import parse_course_ids

logger = logging.getLogger(__name__)


class StripeServiceError(Exception):
    """Raised when a Stripe operation fails."""

    def __init__(self, message: str, stripe_error_code: str | None = None) -> None:
        """Initialize with message and optional Stripe error code.

        Args:
            message: Human-readable error message.
            stripe_error_code: Stripe-specific error code if available.
        """
        super().__init__(message)
        self.stripe_error_code = stripe_error_code


def _wrap(action: str, e: stripe.StripeError) -> StripeServiceError:
    error_code = getattr(e, "code", None)
    logger.error("Stripe %s failed: %s (code: %s)", action, str(e), error_code)
    return StripeServiceError(f"Failed to {action}: {e}", stripe_error_code=error_code)


def invoice_urls(invoice: dict[str, Any] | None) -> dict[str, str | None]:
    """Buyer-facing links of an invoice."""
    invoice = invoice or {}
    return {
        "invoice_url": invoice.get("hosted_invoice_url"),
        "invoice_pdf": invoice.get("invoice_pdf"),
    }


class StripeService:
    """Service for Stripe operations used by the reconciliation pipeline.

    Handles:
    - Webhook signature validation
    - Checkout session, product and subscription lookups
    - Payment-plan termination (``cancel_at``)
    - Invoice creation and delivery

    Usage:
        stripe_svc = get_stripe_service()
        session = await stripe_svc.retrieve_checkout_session("cs_test_123")
    """

    def __init__(
        self,
        *,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        client: StripeClient | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._client = client
        self._webhook_secret = webhook_secret

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            ConfigurationError: If the secret key is not configured.
        """
        if self._client is None:
            secret_key = self._secret_key or get_secret(SecretName.STRIPE_SECRET_KEY)
            self._client = StripeClient(secret_key)
            logger.info("Stripe client initialized")
        return self._client

    def _get_webhook_secret(self) -> str:
        """Get the webhook signing secret.

        Raises:
            ConfigurationError: If the secret is not configured.
        """
        if self._webhook_secret is None:
            self._webhook_secret = get_secret(SecretName.STRIPE_WEBHOOK_SECRET)
        return self._webhook_secret

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify a webhook signature and parse the event.

        Args:
            payload: Raw request body bytes.
            signature: Stripe-Signature header value.

        Returns:
            Parsed Stripe event dictionary.

        Raises:
            StripeServiceError: If the signature or payload is invalid.
            ConfigurationError: If the webhook secret is not configured.
        """
        webhook_secret = self._get_webhook_secret()

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise StripeServiceError(
                f"Invalid webhook signature: {e.user_message or e}"
            ) from e
        except ValueError as e:
            logger.warning("Invalid webhook payload: %s", str(e))
            raise StripeServiceError(f"Invalid payload: {e}") from e

        logger.info("Webhook signature verified for event: %s", event["id"])
        return event.to_dict()

    # === Checkout sessions and products ===

    async def retrieve_checkout_session(
        self, session_id: str, *, expand: list[str] | None = None
    ) -> dict[str, Any]:
        """Retrieve a checkout session.

        Raises:
            StripeServiceError: If the session cannot be retrieved. An unknown
                session has ``stripe_error_code == "resource_missing"``.
        """
        params: dict[str, Any] = {}
        if expand:
            params["expand"] = expand
        try:
            session = await self._get_client().checkout.sessions.retrieve_async(
                session_id, params=params
            )
        except stripe.StripeError as e:
            raise _wrap("retrieve checkout session", e) from e
        return session.to_dict()

    async def list_session_product_ids(self, session_id: str) -> list[str]:
        """Product IDs of a checkout session's line items."""
        try:
            items = await self._get_client().checkout.sessions.line_items.list_async(
                session_id, params={"limit": 20}
            )
        except stripe.StripeError as e:
            raise _wrap("list session line items", e) from e

        product_ids: list[str] = []
        for item in items.to_dict().get("data", []):
            product = (item.get("price") or {}).get("product")
            if isinstance(product, dict):
                product = product.get("id")
            if product and product not in product_ids:
                product_ids.append(product)
        return product_ids

    async def get_product_course_ids(self, product_id: str) -> list[str]:
        """Course IDs stored on a Stripe product's ``clickfunnels_course_ids`` metadata."""
        try:
            product = await self._get_client().products.retrieve_async(product_id)
        except stripe.StripeError as e:
            raise _wrap("retrieve product", e) from e
        metadata = product.to_dict().get("metadata") or {}
        return parse_course_ids(metadata.get("clickfunnels_course_ids"))

    async def retrieve_customer_email(self, customer_id: str) -> str | None:
        try:
            customer = await self._get_client().customers.retrieve_async(customer_id)
        except stripe.StripeError as e:
            raise _wrap("retrieve customer", e) from e
        return customer.to_dict().get("email")

    # === Subscriptions ===

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        try:
            subscription = await self._get_client().subscriptions.retrieve_async(
                subscription_id
            )
        except stripe.StripeError as e:
            raise _wrap("retrieve subscription", e) from e
        return subscription.to_dict()

    async def set_subscription_cancel_at(
        self, subscription_id: str, cancel_at: int
    ) -> dict[str, Any]:
        """Schedule a subscription to end at a Unix timestamp."""
        try:
            logger.info(
                "Scheduling subscription %s to end at %d", subscription_id, cancel_at
            )
            subscription = await self._get_client().subscriptions.update_async(
                subscription_id, params={"cancel_at": cancel_at}
            )
        except stripe.StripeError as e:
            raise _wrap("update subscription", e) from e
        return subscription.to_dict()

    async def count_paid_invoices(self, subscription_id: str) -> int:
        """Number of paid invoices for a subscription."""
        try:
            invoices = await self._get_client().invoices.list_async(
                params={
                    "subscription": subscription_id,
                    "status": "paid",
                    "limit": 100,
                }
            )
        except stripe.StripeError as e:
            raise _wrap("list invoices", e) from e
        return len(invoices.to_dict().get("data", []))

    # === Invoices ===

    async def retrieve_invoice(self, invoice_id: str) -> dict[str, Any]:
        try:
            invoice = await self._get_client().invoices.retrieve_async(invoice_id)
        except stripe.StripeError as e:
            raise _wrap("retrieve invoice", e) from e
        return invoice.to_dict()

    async def ensure_invoice_sent(
        self, customer_id: str, session: dict[str, Any]
    ) -> dict[str, Any]:
        """Make sure the customer has an invoice for this purchase.

        Reuses the session's own invoice or the customer's latest one when
        present. Otherwise creates an invoice for the session amount, finalizes
        it and sends it by email.

        Returns:
            The existing or newly sent invoice.

        Raises:
            StripeServiceError: If any invoice call fails.
        """
        client = self._get_client()

        session_invoice = session.get("invoice")
        if isinstance(session_invoice, dict):
            return session_invoice
        if session_invoice:
            return await self.retrieve_invoice(session_invoice)

        try:
            existing = await client.invoices.list_async(
                params={"customer": customer_id, "limit": 1}
            )
            invoices = existing.to_dict().get("data", [])
            if invoices:
                logger.info(
                    "Invoice %s already exists for customer %s", invoices[0]["id"], customer_id
                )
                return invoices[0]

            logger.info(
                "Creating invoice for customer %s, session %s", customer_id, session.get("id")
            )
            invoice = await client.invoices.create_async(
                params={
                    "customer": customer_id,
                    "auto_advance": False,
                    "collection_method": "send_invoice",
                    "days_until_due": 0,
                    "metadata": {
                        **(session.get("metadata") or {}),
                        "stripe_session_id": session.get("id") or "",
                    },
                }
            )
            if session.get("amount_total"):
                await client.invoice_items.create_async(
                    params={
                        "customer": customer_id,
                        "invoice": invoice.id,
                        "amount": session["amount_total"],
                        "currency": session.get("currency") or "eur",
                        "description": (session.get("metadata") or {}).get("productName")
                        or "Purchase",
                    }
                )
            await client.invoices.finalize_invoice_async(invoice.id)
            invoice = await client.invoices.send_invoice_async(invoice.id)
        except stripe.StripeError as e:
            raise _wrap("send invoice", e) from e

        logger.info("Invoice %s sent to customer %s", invoice.id, customer_id)
        return invoice.to_dict()


@lru_cache(maxsize=1)
def get_stripe_service() -> StripeService:
    """Get the shared StripeService instance (singleton pattern).

    Returns:
        StripeService: Shared service instance.
    """
    return StripeService()


def reset_stripe_service() -> None:
    get_stripe_service.cache_clear()
