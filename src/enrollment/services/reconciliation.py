"""Shared upsert-and-enroll logic for the webhook and success-page paths.

Both entry points resolve who paid and which courses were bought, then call
``reconcile_payment``. The idempotency tracker inside the enrollment service
decides which of two racing paths performs each enrollment.
"""

import logging
from dataclasses import dataclass, field

from enrollment.models.contact import ContactUpsert
from enrollment.models.enrollment import EnrollmentBatchResult
from enrollment.models.enums import EnrollmentStatus, OriginationSource, PaymentType
from enrollment.models.metadata import CheckoutMetadata
from enrollment.services import product_catalog
from enrollment.services.clickfunnels_client import ClickFunnelsClient
from enrollment.services.enrollment_service import EnrollmentService
from enrollment.services.stripe_service import StripeService, StripeServiceError
from enrollment.utils.logging import log_enrollment_operation

logger = logging.getLogger(__name__)

STRIPE_CUSTOMER_TAG = "stripe-customer"
PAID_CUSTOMER_TAG = "paid-customer"

PAYMENT_TYPE_TAGS: dict[PaymentType, str] = {
    PaymentType.ONE_TIME: "one-time-payment",
    PaymentType.SUBSCRIPTION: "subscription",
    PaymentType.PAYMENT_PLAN: "payment-plan",
}


def payment_type_for(metadata: CheckoutMetadata, mode: str | None) -> PaymentType:
    """Payment type from metadata, else from the checkout session mode."""
    if metadata.payment_type is not None:
        return metadata.payment_type
    if mode == "subscription":
        return PaymentType.SUBSCRIPTION
    return PaymentType.ONE_TIME


def build_tags(
    metadata: CheckoutMetadata, payment_type: PaymentType, *extra: str
) -> list[str]:
    tags = [STRIPE_CUSTOMER_TAG, *extra, PAYMENT_TYPE_TAGS[payment_type]]
    if metadata.membership_level:
        tags.append(metadata.membership_level)
    return list(dict.fromkeys(tags))


async def resolve_course_ids(
    metadata: CheckoutMetadata,
    session_id: str | None,
    stripe_service: StripeService,
    *,
    product_first: bool = False,
) -> list[str]:
    """Work out which courses a checkout grants.

    Sources, in order: the metadata course list, the purchased Stripe
    products' ``clickfunnels_course_ids`` metadata, then the static catalog.
    ``product_first`` consults Stripe products before the metadata list. The
    deprecated single course ID is appended when not already present.
    """

    async def from_products() -> list[str]:
        if not session_id:
            return []
        ids: list[str] = []
        try:
            for product_id in await stripe_service.list_session_product_ids(session_id):
                ids.extend(await stripe_service.get_product_course_ids(product_id))
        except StripeServiceError as e:
            logger.warning("Could not read course IDs from products of %s: %s", session_id, e)
        return ids

    if product_first:
        ids = await from_products() or list(metadata.course_ids)
    else:
        ids = list(metadata.course_ids) or await from_products()

    if not ids:
        ids = product_catalog.get_course_ids(metadata.product_id)
        if ids:
            logger.info(
                "Using catalog courses for product %s: %s", metadata.product_id, ids
            )

    return metadata.with_legacy_course(ids)


@dataclass
class ReconciliationRequest:
    """Who paid, for what, through which path."""

    transaction_id: str
    email: str
    payment_type: PaymentType
    course_ids: list[str]
    origination_source: OriginationSource
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    tags: list[str] = field(default_factory=list)
    birth_date: str | None = None


@dataclass
class ReconciliationOutcome:
    contact_id: int | None = None
    upsert_error: str | None = None
    batch: EnrollmentBatchResult | None = None

    @property
    def contact_resolved(self) -> bool:
        return self.contact_id is not None

    @property
    def success(self) -> bool:
        return self.contact_resolved and (self.batch is None or self.batch.success)


def enrollment_status(batch: EnrollmentBatchResult) -> EnrollmentStatus:
    if not batch.failed:
        return EnrollmentStatus.ENROLLED
    if batch.succeeded:
        return EnrollmentStatus.PARTIAL
    return EnrollmentStatus.FAILED


async def reconcile_payment(
    request: ReconciliationRequest,
    *,
    clickfunnels: ClickFunnelsClient,
    enrollment: EnrollmentService,
) -> ReconciliationOutcome:
    """Upsert the buyer's contact, enroll them and record the outcome.

    Remote failures end up in the returned outcome. Configuration errors
    propagate.
    """
    custom_fields = {
        "stripe_session_id": request.transaction_id,
        "payment_type": request.payment_type.value,
    }
    if request.birth_date:
        custom_fields["birth_date"] = request.birth_date

    upsert = await clickfunnels.upsert_contact(
        ContactUpsert(
            email=request.email,
            first_name=request.first_name,
            last_name=request.last_name,
            phone=request.phone,
            tags=request.tags or None,
            custom_fields=custom_fields,
        )
    )
    if not upsert.success or upsert.contact_id is None:
        log_enrollment_operation(
            logger,
            "reconcile_payment",
            transaction_id=request.transaction_id,
            result="failed",
            error=upsert.error or "contact upsert returned no ID",
            email=request.email,
            course_ids=request.course_ids,
        )
        return ReconciliationOutcome(upsert_error=upsert.error or "Contact could not be saved")

    outcome = ReconciliationOutcome(contact_id=upsert.contact_id)
    if not request.course_ids:
        logger.info(
            "No courses to enroll for session %s, contact %s",
            request.transaction_id,
            upsert.contact_id,
        )
        return outcome

    outcome.batch = await enrollment.enroll_in_courses(
        upsert.contact_id,
        request.course_ids,
        request.transaction_id,
        origination_source=request.origination_source,
    )

    recorded = await clickfunnels.update_contact_fields(
        upsert.contact_id,
        {
            "enrollment_status": enrollment_status(outcome.batch).value,
            "enrolled_courses": ",".join(outcome.batch.succeeded),
            "failed_courses": ",".join(outcome.batch.failed),
        },
    )
    if not recorded.success:
        logger.warning(
            "Could not record enrollment status on contact %s: %s",
            upsert.contact_id,
            recorded.error,
        )

    log_enrollment_operation(
        logger,
        "reconcile_payment",
        contact_id=upsert.contact_id,
        transaction_id=request.transaction_id,
        result="success" if outcome.batch.success else "failed",
        error=(
            f"failed courses: {', '.join(outcome.batch.failed)}"
            if outcome.batch.failed
            else None
        ),
        source=request.origination_source.value,
    )
    return outcome
