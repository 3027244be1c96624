"""Synchronous reconciliation for the buyer's return to the success page.

Races the ``checkout.session.completed`` webhook for the same session. Both
paths go through ``reconcile_payment`` and the shared idempotency tracker,
so whichever arrives first performs each enrollment.

The buyer must never see an error page for a payment that succeeded:
provisioning failures downgrade the result to ``partial_success``.
"""

import logging
from functools import lru_cache

from enrollment.config import ConfigurationError
from enrollment.models.enums import OriginationSource
from enrollment.models.metadata import CheckoutMetadata
from enrollment.models.success import SuccessPageResult
from enrollment.services.clickfunnels_client import ClickFunnelsClient, get_clickfunnels_client
from enrollment.services.enrollment_service import EnrollmentService, get_enrollment_service
from enrollment.services.reconciliation import (
    PAID_CUSTOMER_TAG,
    ReconciliationOutcome,
    ReconciliationRequest,
    build_tags,
    payment_type_for,
    reconcile_payment,
    resolve_course_ids,
)
from enrollment.services.stripe_service import (
    StripeService,
    StripeServiceError,
    get_stripe_service,
    invoice_urls,
)

logger = logging.getLogger(__name__)

ACCOUNT_FAILED_MESSAGE = (
    "Your payment was successful, but we could not set up your account yet. "
    "Our team has been notified and will give you access shortly."
)
ENROLLMENT_FAILED_MESSAGE = (
    "Your payment was successful, but access to some courses could not be "
    "granted yet. Our team has been notified."
)


class SuccessPageHandler:
    """Reconciles a paid checkout session when the buyer lands on the success page."""

    def __init__(
        self,
        *,
        stripe_service: StripeService | None = None,
        clickfunnels: ClickFunnelsClient | None = None,
        enrollment: EnrollmentService | None = None,
    ) -> None:
        self._stripe = stripe_service or get_stripe_service()
        self._clickfunnels = clickfunnels or get_clickfunnels_client()
        self._enrollment = enrollment or get_enrollment_service()

    async def _invoice_links(self, session: dict) -> dict[str, str | None]:
        invoice = session.get("invoice")
        if isinstance(invoice, dict) and invoice.get("hosted_invoice_url"):
            return invoice_urls(invoice)

        customer_id = session.get("customer")
        if isinstance(customer_id, dict):
            customer_id = customer_id.get("id")
        if not customer_id:
            return invoice_urls(None)

        try:
            return invoice_urls(await self._stripe.ensure_invoice_sent(customer_id, session))
        except (StripeServiceError, ConfigurationError) as e:
            logger.error("Invoice handling failed for session %s: %s", session.get("id"), e)
            return invoice_urls(None)

    async def handle(self, session_id: str) -> SuccessPageResult:
        """Verify payment, then provision the buyer.

        Returns:
            A result for the page. ``success`` reflects the payment only.
        """
        try:
            session = await self._stripe.retrieve_checkout_session(
                session_id, expand=["invoice"]
            )
        except (StripeServiceError, ConfigurationError) as e:
            logger.error("Could not retrieve checkout session %s: %s", session_id, e)
            return SuccessPageResult(
                success=False, error="We could not retrieve your payment details."
            )

        details = session.get("customer_details") or {}
        metadata = CheckoutMetadata.from_stripe(session.get("metadata"))
        email = details.get("email") or session.get("customer_email") or metadata.email

        if session.get("payment_status") != "paid":
            logger.warning(
                "Success page for session %s with payment_status=%s",
                session_id,
                session.get("payment_status"),
            )
            return SuccessPageResult(
                success=False,
                customer_email=email,
                error="Your payment has not been completed yet.",
            )

        result = SuccessPageResult(success=True, customer_email=email)
        result = result.model_copy(update=await self._invoice_links(session))

        if not email:
            logger.error("Paid session %s has no customer email", session_id)
            return result.model_copy(
                update={"partial_success": True, "error": ACCOUNT_FAILED_MESSAGE}
            )

        payment_type = payment_type_for(metadata, session.get("mode"))
        try:
            course_ids = await resolve_course_ids(
                metadata, session_id, self._stripe, product_first=True
            )
            # Phone is left out: ClickFunnels rejects a phone already on another contact
            outcome = await reconcile_payment(
                ReconciliationRequest(
                    transaction_id=session_id,
                    email=email,
                    payment_type=payment_type,
                    course_ids=course_ids,
                    origination_source=OriginationSource.SUCCESS_PAGE,
                    first_name=metadata.first_name,
                    last_name=metadata.last_name,
                    tags=build_tags(metadata, payment_type, PAID_CUSTOMER_TAG),
                    birth_date=metadata.birth_date,
                ),
                clickfunnels=self._clickfunnels,
                enrollment=self._enrollment,
            )
        except ConfigurationError as e:
            logger.error("Provisioning not configured for session %s: %s", session_id, e)
            outcome = ReconciliationOutcome(upsert_error=str(e))

        return self._apply_outcome(result, outcome)

    @staticmethod
    def _apply_outcome(
        result: SuccessPageResult, outcome: ReconciliationOutcome
    ) -> SuccessPageResult:
        if not outcome.contact_resolved:
            return result.model_copy(
                update={"partial_success": True, "error": ACCOUNT_FAILED_MESSAGE}
            )

        batch = outcome.batch
        if batch is None:
            return result

        update: dict = {
            "has_enrollment": bool(batch.succeeded),
            "enrolled_courses": list(batch.succeeded),
            "failed_courses": list(batch.failed),
        }
        if batch.failed:
            update["partial_success"] = True
            update["error"] = ENROLLMENT_FAILED_MESSAGE
        return result.model_copy(update=update)


@lru_cache(maxsize=1)
def get_success_page_handler() -> SuccessPageHandler:
    return SuccessPageHandler()


def reset_success_page_handler() -> None:
    get_success_page_handler.cache_clear()
