"""Pytest configuration and fixtures for checkout gateway tests.

This module provides reusable fixtures for testing:
- Environment and singleton resets
- An in-memory ClickFunnels API served through httpx.MockTransport
- A mocked StripeService
- Stripe event factories and webhook signatures
"""

import hashlib
import hmac
import json
import os
import time
from typing import Any, Generator
from unittest.mock import MagicMock

import httpx
import pytest

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("CLICKFUNNELS_SUBDOMAIN", "evotion")
os.environ.setdefault("CLICKFUNNELS_WORKSPACE_ID", "ws_test")
os.environ.setdefault("ENROLLMENT_RETRY_DELAY_SECONDS", "0")
os.environ.setdefault("HTTP_BASE_DELAY_SECONDS", "0")

TEST_WEBHOOK_SECRET = "whsec_test_secret_for_testing"
TEST_ADMIN_KEY = "admin_test_key"
TEST_SESSION_ID = "cs_test_abc123"
TEST_EMAIL = "jan@example.nl"

from enrollment.config import Settings  # noqa: E402
from enrollment.services.clickfunnels_client import ClickFunnelsClient  # noqa: E402
from enrollment.services.enrollment_service import EnrollmentService  # noqa: E402
from enrollment.services.enrollment_tracker import IdempotencyTracker  # noqa: E402
from enrollment.services.stripe_service import StripeService  # noqa: E402


# === Singleton Resets ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached services before and after each test."""
    from enrollment.services.ssm_service import reset_ssm_service
    from gateway.dependencies import reset_services
    from gateway.routes.payments import status_cache

    reset_services()
    reset_ssm_service()
    status_cache.clear()
    yield
    reset_services()
    reset_ssm_service()
    status_cache.clear()


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


# === Settings ===


@pytest.fixture
def test_settings() -> Settings:
    """Settings with no waiting between retries."""
    return Settings(
        environment="test",
        clickfunnels_subdomain="evotion",
        clickfunnels_workspace_id="ws_test",
        enrollment_retry_delay_seconds=0.0,
        http_base_delay_seconds=0.0,
        http_max_retry_after_seconds=0.0,
    )


# === Fake ClickFunnels API ===


class FakeClickFunnelsAPI:
    """In-memory ClickFunnels v2 API for httpx.MockTransport.

    Records every request. Courses in ``failing_courses`` answer enrollment
    creation with HTTP 500.
    """

    def __init__(self) -> None:
        self.contacts: dict[int, dict[str, Any]] = {}
        self.enrollments: dict[str, list[dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []
        self.failing_courses: set[str] = set()
        # False: contacts created through the API stay out of email search
        self.index_new_contacts = True
        self._unindexed: set[int] = set()
        self._next_id = 1000

    def add_contact(self, email: str, **fields: Any) -> int:
        self._next_id += 1
        self.contacts[self._next_id] = {
            "id": self._next_id,
            "email_address": email,
            "tags": [],
            "custom_attributes": {},
            **fields,
        }
        return self._next_id

    def enroll(self, contact_id: int, course_id: str, suspended: bool = False) -> None:
        self.enrollments.setdefault(course_id, []).append(
            {"id": len(self.requests) + 1, "contact_id": contact_id, "suspended": suspended}
        )

    def calls(self, method: str, path_fragment: str) -> list[httpx.Request]:
        return [
            r for r in self.requests if r.method == method and path_fragment in r.url.path
        ]

    def bodies(self, method: str, path_fragment: str) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.calls(method, path_fragment)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.removeprefix("/api/v2/").split("/")

        if parts[0] == "workspaces" and parts[2:] == ["contacts"]:
            if request.method == "GET":
                email = request.url.params.get("filter[email_address]")
                found = [
                    c
                    for c in self.contacts.values()
                    if c["email_address"] == email and c["id"] not in self._unindexed
                ]
                return httpx.Response(200, json=found)
            body = json.loads(request.content)["contact"]
            contact_id = self.add_contact(
                body["email_address"],
                **{k: v for k, v in body.items() if k != "email_address"},
            )
            if not self.index_new_contacts:
                self._unindexed.add(contact_id)
            return httpx.Response(201, json=self.contacts[contact_id])

        if parts[0] == "contacts" and request.method == "PUT":
            contact = self.contacts[int(parts[1])]
            body = json.loads(request.content)["contact"]
            custom = {**contact["custom_attributes"], **body.pop("custom_attributes", {})}
            contact.update(body)
            contact["custom_attributes"] = custom
            return httpx.Response(200, json=contact)

        if parts[0] == "courses" and parts[2:] == ["enrollments"]:
            course_id = parts[1]
            if request.method == "GET":
                contact_id = int(request.url.params.get("filter[contact_id]"))
                found = [
                    e for e in self.enrollments.get(course_id, []) if e["contact_id"] == contact_id
                ]
                return httpx.Response(200, json=found)
            if course_id in self.failing_courses:
                return httpx.Response(
                    500, json={"errors": [{"detail": f"Course {course_id} is unavailable"}]}
                )
            body = json.loads(request.content)["courses_enrollment"]
            self.enroll(body["contact_id"], course_id)
            return httpx.Response(201, json={"id": 1, "course_id": course_id, **body})

        return httpx.Response(404, json={"errors": [{"detail": "Not found"}]})


@pytest.fixture
def cf_api() -> FakeClickFunnelsAPI:
    return FakeClickFunnelsAPI()


@pytest.fixture
def cf_client(cf_api: FakeClickFunnelsAPI, test_settings: Settings) -> ClickFunnelsClient:
    """ClickFunnelsClient wired to the in-memory API."""
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(cf_api),
        base_url=test_settings.clickfunnels_base_url,
    )
    return ClickFunnelsClient(settings=test_settings, api_token="cf_test", http_client=http)


@pytest.fixture
def tracker() -> IdempotencyTracker:
    return IdempotencyTracker()


@pytest.fixture
def enrollment_service(
    cf_client: ClickFunnelsClient, tracker: IdempotencyTracker, test_settings: Settings
) -> EnrollmentService:
    return EnrollmentService(client=cf_client, tracker=tracker, settings=test_settings)


# === Stripe ===


@pytest.fixture
def stripe_mock() -> MagicMock:
    """StripeService mock. spec= makes its async methods AsyncMocks."""
    svc = MagicMock(spec=StripeService)
    svc.list_session_product_ids.return_value = []
    svc.get_product_course_ids.return_value = []
    svc.count_paid_invoices.return_value = 0
    svc.retrieve_customer_email.return_value = None
    svc.ensure_invoice_sent.return_value = {
        "id": "in_test_1",
        "hosted_invoice_url": "https://invoice.stripe.com/i/in_test_1",
        "invoice_pdf": "https://pay.stripe.com/invoice/in_test_1/pdf",
    }
    return svc


def create_stripe_signature(payload: bytes, secret: str = TEST_WEBHOOK_SECRET) -> str:
    """Create a valid Stripe webhook signature.

    Stripe signatures use HMAC-SHA256 with format: t={timestamp},v1={signature}
    """
    timestamp = str(int(time.time()))
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}"
    signature = hmac.new(
        secret.encode("utf-8"),
        signed_payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_checkout_session(
    *,
    session_id: str = TEST_SESSION_ID,
    email: str = TEST_EMAIL,
    metadata: dict[str, str] | None = None,
    payment_status: str = "paid",
    mode: str = "payment",
    customer: str | None = "cus_test_1",
) -> dict[str, Any]:
    return {
        "id": session_id,
        "object": "checkout.session",
        "mode": mode,
        "payment_status": payment_status,
        "customer": customer,
        "customer_email": email,
        "customer_details": {"email": email, "name": "Jan de Vries", "phone": None},
        "amount_total": 4900,
        "currency": "eur",
        "invoice": None,
        "metadata": metadata if metadata is not None else {},
    }


def make_event(
    event_type: str,
    data_object: dict[str, Any],
    event_id: str = "evt_test_1",
) -> dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": data_object},
    }


def make_subscription(
    *,
    subscription_id: str = "sub_test_1",
    status: str = "active",
    metadata: dict[str, str] | None = None,
    interval: str = "month",
    interval_count: int = 1,
    start_date: int = 1735689600,  # 2025-01-01T00:00:00Z
    cancel_at: int | None = None,
) -> dict[str, Any]:
    return {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "customer": "cus_test_1",
        "start_date": start_date,
        "cancel_at": cancel_at,
        "canceled_at": None,
        "ended_at": None,
        "metadata": metadata if metadata is not None else {},
        "items": {
            "data": [
                {"price": {"recurring": {"interval": interval, "interval_count": interval_count}}}
            ]
        },
    }
