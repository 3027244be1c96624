"""Per-event-type handling of verified Stripe events.

The checkout handler provisions the buyer; the invoice and subscription
handlers only record payment state on the buyer's ClickFunnels contact.
Writes to ClickFunnels are best-effort enrichment: a handler that cannot
find the contact logs and returns instead of raising.
"""

import datetime as dt
import logging
from typing import Any

from enrollment.config import ConfigurationError
from enrollment.models.contact import Contact
from enrollment.models.enums import EventType, OriginationSource, ProcessingResult
from enrollment.models.metadata import CheckoutMetadata
from enrollment.models.stripe_webhook import HandlerOutcome, PaymentEvent
from enrollment.services.clickfunnels_client import (
    ClickFunnelsClient,
    ClickFunnelsError,
    get_clickfunnels_client,
)
from enrollment.services.enrollment_service import EnrollmentService, get_enrollment_service
from enrollment.services.payment_plan import (
    InstallmentProgress,
    projected_end_date,
    subscription_interval,
)
from enrollment.services.reconciliation import (
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
)

logger = logging.getLogger(__name__)


def _iso_date(timestamp: int | None) -> str:
    if not timestamp:
        return ""
    return dt.datetime.fromtimestamp(timestamp, tz=dt.UTC).date().isoformat()


def _split_name(full_name: str | None) -> tuple[str | None, str | None]:
    if not full_name or not full_name.strip():
        return None, None
    first, _, last = full_name.strip().partition(" ")
    return first, last.strip() or None


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """Subscription an invoice belongs to, across Stripe API versions."""
    subscription = invoice.get("subscription")
    if not subscription:
        parent = invoice.get("parent") or {}
        subscription = (parent.get("subscription_details") or {}).get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    return subscription or None


class WebhookHandler:
    """Handler for processing Stripe webhook events.

    One method per event type. ``dispatch`` routes a verified event to the
    right method; unknown types are acknowledged without side effects.
    """

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

    async def dispatch(self, event: PaymentEvent) -> HandlerOutcome:
        handlers = {
            EventType.CHECKOUT_SESSION_COMPLETED.value: self.process_checkout_completed,
            EventType.INVOICE_PAID.value: self.process_invoice_paid,
            EventType.SUBSCRIPTION_CREATED.value: self.process_subscription_created,
            EventType.SUBSCRIPTION_UPDATED.value: self.process_subscription_updated,
            EventType.SUBSCRIPTION_DELETED.value: self.process_subscription_deleted,
        }
        handler = handlers.get(event.type)
        if handler is None:
            logger.info("Unhandled event type: %s", event.type)
            return HandlerOutcome(
                result=ProcessingResult.SKIPPED,
                message=f"Unhandled event type: {event.type}",
            )
        return await handler(event)

    # === Helpers ===

    async def _find_contact(self, email: str | None, event: PaymentEvent) -> Contact | None:
        if not email:
            logger.warning("No email on %s %s, cannot look up contact", event.type, event.id)
            return None
        try:
            contact = await self._clickfunnels.find_contact_by_email(email)
        except (ClickFunnelsError, ConfigurationError) as e:
            logger.error("Contact lookup failed for %s (%s): %s", email, event.id, e)
            return None
        if contact is None:
            logger.warning("No ClickFunnels contact for %s (%s)", email, event.id)
        return contact

    async def _subscription_email(
        self, subscription: dict[str, Any], metadata: CheckoutMetadata
    ) -> str | None:
        if metadata.email:
            return metadata.email
        customer = subscription.get("customer")
        if isinstance(customer, dict):
            return customer.get("email")
        if not customer:
            return None
        try:
            return await self._stripe.retrieve_customer_email(customer)
        except (StripeServiceError, ConfigurationError) as e:
            logger.error("Could not read email of customer %s: %s", customer, e)
            return None

    async def _write_fields(
        self, event: PaymentEvent, email: str | None, fields: dict[str, str]
    ) -> HandlerOutcome:
        contact = await self._find_contact(email, event)
        if contact is None:
            return HandlerOutcome(
                result=ProcessingResult.SKIPPED, message="Contact not found"
            )

        result = await self._clickfunnels.update_contact(contact, custom_fields=fields)
        if not result.success:
            return HandlerOutcome(
                result=ProcessingResult.ERROR,
                message=result.error,
                contact_id=contact.id,
            )
        return HandlerOutcome(result=ProcessingResult.SUCCESS, contact_id=contact.id)

    async def _payment_plan_progress(
        self, subscription_id: str, metadata: CheckoutMetadata
    ) -> InstallmentProgress | None:
        if not metadata.is_payment_plan or metadata.payment_count is None:
            return None
        try:
            paid = await self._stripe.count_paid_invoices(subscription_id)
        except (StripeServiceError, ConfigurationError) as e:
            logger.error("Could not count paid invoices of %s: %s", subscription_id, e)
            return None
        return InstallmentProgress(paid=paid, total=metadata.payment_count)

    # === checkout.session.completed ===

    async def process_checkout_completed(self, event: PaymentEvent) -> HandlerOutcome:
        """Upsert the buyer, enroll them and make sure an invoice goes out.

        Sessions whose metadata says the success page handles enrollment are
        left alone entirely.
        """
        session = event.data_object
        session_id = session.get("id") or ""
        metadata = CheckoutMetadata.from_stripe(session.get("metadata"))

        if metadata.handled_by_success_page:
            logger.info("Session %s is handled by the success page, skipping", session_id)
            return HandlerOutcome(
                result=ProcessingResult.DEFERRED,
                message="Enrollment handled by success page",
            )

        if session.get("payment_status") == "unpaid":
            logger.warning("Session %s completed without payment, skipping", session_id)
            return HandlerOutcome(
                result=ProcessingResult.SKIPPED, message="Payment status is 'unpaid'"
            )

        details = session.get("customer_details") or {}
        email = details.get("email") or session.get("customer_email") or metadata.email
        if not email:
            logger.error("No customer email on session %s", session_id)
            return HandlerOutcome(
                result=ProcessingResult.ERROR, message="No customer email on session"
            )

        first_name, last_name = metadata.first_name, metadata.last_name
        if not first_name and not last_name:
            first_name, last_name = _split_name(details.get("name"))

        payment_type = payment_type_for(metadata, session.get("mode"))
        course_ids = await resolve_course_ids(metadata, session_id, self._stripe)

        outcome = await reconcile_payment(
            ReconciliationRequest(
                transaction_id=session_id,
                email=email,
                payment_type=payment_type,
                course_ids=course_ids,
                origination_source=OriginationSource.WEBHOOK,
                first_name=first_name,
                last_name=last_name,
                phone=metadata.phone or details.get("phone"),
                tags=build_tags(metadata, payment_type),
                birth_date=metadata.birth_date,
            ),
            clickfunnels=self._clickfunnels,
            enrollment=self._enrollment,
        )

        customer_id = session.get("customer")
        if isinstance(customer_id, dict):
            customer_id = customer_id.get("id")
        if customer_id:
            try:
                await self._stripe.ensure_invoice_sent(customer_id, session)
            except (StripeServiceError, ConfigurationError) as e:
                logger.error("Invoice handling failed for session %s: %s", session_id, e)

        if not outcome.contact_resolved:
            return HandlerOutcome(result=ProcessingResult.ERROR, message=outcome.upsert_error)
        if outcome.batch is not None and not outcome.batch.success:
            return HandlerOutcome(
                result=ProcessingResult.ERROR,
                message=f"Enrollment failed for: {', '.join(outcome.batch.failed)}",
                contact_id=outcome.contact_id,
                batch=outcome.batch,
            )
        return HandlerOutcome(
            result=ProcessingResult.SUCCESS,
            contact_id=outcome.contact_id,
            batch=outcome.batch,
        )

    # === invoice.paid ===

    async def process_invoice_paid(self, event: PaymentEvent) -> HandlerOutcome:
        """Record a subscription payment and payment-plan installment progress."""
        invoice = event.data_object
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return HandlerOutcome(
                result=ProcessingResult.SKIPPED, message="Invoice is not for a subscription"
            )

        try:
            subscription = await self._stripe.retrieve_subscription(subscription_id)
        except (StripeServiceError, ConfigurationError) as e:
            logger.error("Could not retrieve subscription %s: %s", subscription_id, e)
            return HandlerOutcome(result=ProcessingResult.ERROR, message=str(e))
        metadata = CheckoutMetadata.from_stripe(subscription.get("metadata"))

        transitions = invoice.get("status_transitions") or {}
        fields = {
            "stripe_subscription_id": subscription_id,
            "subscription_status": subscription.get("status") or "",
            "last_payment_date": _iso_date(transitions.get("paid_at") or invoice.get("created")),
        }

        progress = await self._payment_plan_progress(subscription_id, metadata)
        if progress is not None:
            fields["installments_paid"] = str(progress.paid)
            fields["installments_total"] = str(progress.total)
            fields["payment_plan_status"] = "completed" if progress.completed else "active"
            logger.info(
                "Payment plan %s: installment %d of %d",
                subscription_id,
                progress.paid,
                progress.total,
            )

        email = invoice.get("customer_email") or await self._subscription_email(
            subscription, metadata
        )
        return await self._write_fields(event, email, fields)

    # === customer.subscription.* ===

    async def process_subscription_created(self, event: PaymentEvent) -> HandlerOutcome:
        """Record a new subscription; payment plans get a projected end date."""
        subscription = event.data_object
        subscription_id = subscription.get("id") or ""
        metadata = CheckoutMetadata.from_stripe(subscription.get("metadata"))

        fields = {
            "stripe_subscription_id": subscription_id,
            "subscription_status": subscription.get("status") or "",
            "subscription_start": _iso_date(subscription.get("start_date")),
        }

        if metadata.is_payment_plan and metadata.payment_count is not None:
            interval, interval_count = subscription_interval(subscription)
            start = dt.datetime.fromtimestamp(
                subscription.get("start_date") or event.created or 0, tz=dt.UTC
            )
            end = projected_end_date(start, interval, interval_count, metadata.payment_count)
            fields["payment_plan_end_date"] = end.date().isoformat()
            fields["installments_total"] = str(metadata.payment_count)
            fields["payment_plan_status"] = "active"

            if not subscription.get("cancel_at"):
                try:
                    await self._stripe.set_subscription_cancel_at(
                        subscription_id, int(end.timestamp())
                    )
                except (StripeServiceError, ConfigurationError) as e:
                    logger.error(
                        "Could not schedule end of payment plan %s: %s", subscription_id, e
                    )

        email = await self._subscription_email(subscription, metadata)
        return await self._write_fields(event, email, fields)

    async def process_subscription_updated(self, event: PaymentEvent) -> HandlerOutcome:
        subscription = event.data_object
        metadata = CheckoutMetadata.from_stripe(subscription.get("metadata"))

        fields = {
            "stripe_subscription_id": subscription.get("id") or "",
            "subscription_status": subscription.get("status") or "",
            "cancellation_date": _iso_date(
                subscription.get("cancel_at") or subscription.get("canceled_at")
            ),
        }

        email = await self._subscription_email(subscription, metadata)
        return await self._write_fields(event, email, fields)

    async def process_subscription_deleted(self, event: PaymentEvent) -> HandlerOutcome:
        """Record the end of a subscription.

        A payment plan that collected every installment is ``completed``;
        one that ended earlier is ``cancelled``.
        """
        subscription = event.data_object
        subscription_id = subscription.get("id") or ""
        metadata = CheckoutMetadata.from_stripe(subscription.get("metadata"))

        fields = {
            "stripe_subscription_id": subscription_id,
            "subscription_status": subscription.get("status") or "canceled",
            "cancellation_date": _iso_date(
                subscription.get("ended_at") or subscription.get("canceled_at")
            ),
        }

        progress = await self._payment_plan_progress(subscription_id, metadata)
        if progress is not None:
            fields["installments_paid"] = str(progress.paid)
            fields["payment_plan_status"] = "completed" if progress.completed else "cancelled"
            logger.info(
                "Payment plan %s ended after %d of %d installments",
                subscription_id,
                progress.paid,
                progress.total,
            )

        email = await self._subscription_email(subscription, metadata)
        return await self._write_fields(event, email, fields)
