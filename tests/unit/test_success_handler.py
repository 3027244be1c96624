"""Unit tests for SuccessPageHandler."""

import asyncio

import httpx
import pytest
from conftest import TEST_EMAIL, TEST_SESSION_ID, make_checkout_session, make_event

from enrollment.config import ConfigurationError
from enrollment.models.stripe_webhook import PaymentEvent
from enrollment.services.clickfunnels_client import ClickFunnelsClient
from enrollment.services.enrollment_service import EnrollmentService
from enrollment.services.stripe_service import StripeServiceError
from enrollment.services.success_handler import (
    ACCOUNT_FAILED_MESSAGE,
    ENROLLMENT_FAILED_MESSAGE,
    SuccessPageHandler,
)
from enrollment.services.webhook_handler import WebhookHandler

SUCCESS_PAGE_METADATA = {
    "clickfunnels_course_ids": '["course1","course2"]',
    "enrollment_handled_by": "success_page",
    "payment_type": "one_time",
    "first_name": "Jan",
    "last_name": "de Vries",
    "phone": "+31612345678",
}


@pytest.fixture
def handler(stripe_mock, cf_client, enrollment_service) -> SuccessPageHandler:
    return SuccessPageHandler(
        stripe_service=stripe_mock, clickfunnels=cf_client, enrollment=enrollment_service
    )


# === Payment verification ===


class TestPaymentVerification:
    async def test_unknown_session(self, handler, stripe_mock, cf_api):
        stripe_mock.retrieve_checkout_session.side_effect = StripeServiceError(
            "No such checkout.session", stripe_error_code="resource_missing"
        )

        result = await handler.handle("cs_missing")

        assert result.success is False
        assert result.error == "We could not retrieve your payment details."
        assert cf_api.requests == []

    async def test_unpaid_session_has_no_side_effects(self, handler, stripe_mock, cf_api):
        stripe_mock.retrieve_checkout_session.return_value = make_checkout_session(
            payment_status="unpaid", metadata=SUCCESS_PAGE_METADATA
        )

        result = await handler.handle(TEST_SESSION_ID)

        assert result.success is False
        assert result.customer_email == TEST_EMAIL
        assert cf_api.requests == []
        stripe_mock.ensure_invoice_sent.assert_not_awaited()


# === Provisioning ===


class TestProvisioning:
    async def test_paid_session_enrolls(self, handler, stripe_mock, cf_api):
        stripe_mock.retrieve_checkout_session.return_value = make_checkout_session(
            metadata=SUCCESS_PAGE_METADATA
        )

        result = await handler.handle(TEST_SESSION_ID)

        assert result.success is True
        assert result.partial_success is False
        assert result.has_enrollment is True
        assert result.enrolled_courses == ["course1", "course2"]
        assert result.failed_courses == []
        assert result.invoice_url == "https://invoice.stripe.com/i/in_test_1"
        assert result.invoice_pdf == "https://pay.stripe.com/invoice/in_test_1/pdf"
        stripe_mock.retrieve_checkout_session.assert_awaited_once_with(
            TEST_SESSION_ID, expand=["invoice"]
        )

        created = cf_api.bodies("POST", "/contacts")[0]["contact"]
        assert "phone_number" not in created
        assert "paid-customer" in created["tags"]
        sources = {
            b["courses_enrollment"]["origination_source_type"]
            for b in cf_api.bodies("POST", "/enrollments")
        }
        assert sources == {"success_page"}

    async def test_product_courses_take_precedence(self, handler, stripe_mock, cf_api):
        stripe_mock.retrieve_checkout_session.return_value = make_checkout_session(
            metadata={**SUCCESS_PAGE_METADATA, "clickfunnels_course_id": "legacy1"}
        )
        stripe_mock.list_session_product_ids.return_value = ["prod_1"]
        stripe_mock.get_product_course_ids.return_value = ["eWbLVk"]

        result = await handler.handle(TEST_SESSION_ID)

        assert result.enrolled_courses == ["eWbLVk", "legacy1"]

    async def test_session_invoice_is_used_directly(self, handler, stripe_mock):
        session = make_checkout_session(metadata=SUCCESS_PAGE_METADATA)
        session["invoice"] = {
            "id": "in_auto",
            "hosted_invoice_url": "https://invoice.stripe.com/i/in_auto",
            "invoice_pdf": "https://pay.stripe.com/invoice/in_auto/pdf",
        }
        stripe_mock.retrieve_checkout_session.return_value = session

        result = await handler.handle(TEST_SESSION_ID)

        assert result.invoice_url == "https://invoice.stripe.com/i/in_auto"
        stripe_mock.ensure_invoice_sent.assert_not_awaited()

    async def test_invoice_failure_leaves_links_empty(self, handler, stripe_mock):
        stripe_mock.retrieve_checkout_session.return_value = make_checkout_session(
            metadata=SUCCESS_PAGE_METADATA
        )
        stripe_mock.ensure_invoice_sent.side_effect = StripeServiceError("boom")

        result = await handler.handle(TEST_SESSION_ID)

        assert result.success is True
        assert result.invoice_url is None
        assert result.has_enrollment is True


# === Partial success ===


class TestPartialSuccess:
    async def test_course_failure(self, handler, stripe_mock, cf_api):
        cf_api.failing_courses.add("course2")
        stripe_mock.retrieve_checkout_session.return_value = make_checkout_session(
            metadata=SUCCESS_PAGE_METADATA
        )

        result = await handler.handle(TEST_SESSION_ID)

        assert result.success is True
        assert result.partial_success is True
        assert result.enrolled_courses == ["course1"]
        assert result.failed_courses == ["course2"]
        assert result.error == ENROLLMENT_FAILED_MESSAGE

    async def test_missing_email(self, handler, stripe_mock, cf_api):
        session = make_checkout_session(email="", metadata=SUCCESS_PAGE_METADATA)
        session["customer_details"]["email"] = None
        stripe_mock.retrieve_checkout_session.return_value = session

        result = await handler.handle(TEST_SESSION_ID)

        assert result.success is True
        assert result.partial_success is True
        assert result.error == ACCOUNT_FAILED_MESSAGE
        assert cf_api.requests == []

    async def test_clickfunnels_not_configured(self, stripe_mock, cf_client, enrollment_service):
        stripe_mock.retrieve_checkout_session.return_value = make_checkout_session(
            metadata=SUCCESS_PAGE_METADATA
        )

        async def unconfigured(data):
            raise ConfigurationError("no token", setting="CLICKFUNNELS_API_TOKEN")

        cf_client.upsert_contact = unconfigured
        handler = SuccessPageHandler(
            stripe_service=stripe_mock, clickfunnels=cf_client, enrollment=enrollment_service
        )

        result = await handler.handle(TEST_SESSION_ID)

        assert result.success is True
        assert result.partial_success is True
        assert result.error == ACCOUNT_FAILED_MESSAGE


# === Race with the webhook ===


class TestWebhookRace:
    async def test_webhook_defers_and_page_enrolls_once(
        self, handler, stripe_mock, cf_client, enrollment_service, cf_api
    ):
        session = make_checkout_session(metadata=SUCCESS_PAGE_METADATA)
        stripe_mock.retrieve_checkout_session.return_value = session
        webhook = WebhookHandler(
            stripe_service=stripe_mock, clickfunnels=cf_client, enrollment=enrollment_service
        )

        await webhook.dispatch(
            PaymentEvent.from_stripe(make_event("checkout.session.completed", session))
        )
        result = await handler.handle(TEST_SESSION_ID)
        again = await handler.handle(TEST_SESSION_ID)

        assert result.enrolled_courses == ["course1", "course2"]
        assert again.enrolled_courses == ["course1", "course2"]
        assert len(cf_api.calls("POST", "/courses/course1/enrollments")) == 1
        assert len(cf_api.calls("POST", "/courses/course2/enrollments")) == 1

    async def test_concurrent_paths_enroll_each_course_once(
        self, stripe_mock, cf_api, tracker, test_settings
    ):
        async def yielding(request):
            # Hand control back to the loop so the two paths interleave
            await asyncio.sleep(0)
            return cf_api(request)

        client = ClickFunnelsClient(
            settings=test_settings,
            api_token="cf_test",
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(yielding),
                base_url=test_settings.clickfunnels_base_url,
            ),
        )
        enrollment = EnrollmentService(client=client, tracker=tracker, settings=test_settings)
        contact_id = cf_api.add_contact(TEST_EMAIL)
        session = make_checkout_session(
            metadata={"clickfunnels_course_ids": '["course1","course2"]'}
        )
        stripe_mock.retrieve_checkout_session.return_value = session
        webhook = WebhookHandler(
            stripe_service=stripe_mock, clickfunnels=client, enrollment=enrollment
        )
        page = SuccessPageHandler(
            stripe_service=stripe_mock, clickfunnels=client, enrollment=enrollment
        )

        outcome, result = await asyncio.gather(
            webhook.process_checkout_completed(
                PaymentEvent.from_stripe(make_event("checkout.session.completed", session))
            ),
            page.handle(TEST_SESSION_ID),
        )

        assert len(cf_api.calls("POST", "/courses/course1/enrollments")) == 1
        assert len(cf_api.calls("POST", "/courses/course2/enrollments")) == 1
        assert outcome.contact_id == contact_id
        assert outcome.batch.succeeded == ["course1", "course2"]
        assert result.enrolled_courses == ["course1", "course2"]
        assert result.failed_courses == []
        assert len(cf_api.contacts) == 1
