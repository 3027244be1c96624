"""Typed schema for the checkout metadata carried on Stripe objects.

Stripe metadata is a flat ``str -> str`` map set server-side when the checkout
session is created. It is the only state carried from checkout to webhook, so
it is parsed into ``CheckoutMetadata`` once at the boundary and validated on
read instead of being accessed by key convention throughout the code.
"""

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import EnrollmentHandledBy, PaymentType

logger = logging.getLogger(__name__)

CURRENT_METADATA_VERSION = 1

# Stripe metadata key -> model field
_KEY_MAP: dict[str, str] = {
    "email": "email",
    "first_name": "first_name",
    "last_name": "last_name",
    "phone": "phone",
    "birth_date": "birth_date",
    "productId": "product_id",
    "productName": "product_name",
    "variantId": "variant_id",
    "variantName": "variant_name",
    "clickfunnels_product_id": "clickfunnels_product_id",
    "clickfunnels_variant_id": "clickfunnels_variant_id",
    "clickfunnels_course_id": "legacy_course_id",
    "membershipLevel": "membership_level",
}

_SPECIAL_KEYS = {
    "metadata_version",
    "name",
    "clickfunnels_course_ids",
    "payment_type",
    "payment_count",
    "enrollment_handled_by",
}


def parse_course_ids(raw: str | None) -> list[str]:
    """Parse a course-ID list stored as a metadata string.

    A JSON list yields its items as strings. A JSON scalar or a non-JSON
    string is treated as a single course ID. Blank values yield an empty list.
    """
    if raw is None or not raw.strip():
        return []

    try:
        parsed: Any = json.loads(raw)
    except ValueError:
        return [raw.strip()]

    if isinstance(parsed, list):
        return [str(item).strip() for item in parsed if str(item).strip()]
    if parsed is None:
        return []
    return [str(parsed).strip()]


class CheckoutMetadata(BaseModel):
    """Checkout intent stored in Stripe metadata.

    Empty strings are treated as absent. Keys this schema does not know are
    preserved in ``extra`` so that serializing back loses nothing.
    """

    model_config = ConfigDict(frozen=True)

    metadata_version: int = CURRENT_METADATA_VERSION
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    birth_date: str | None = None
    product_id: str | None = None
    product_name: str | None = None
    variant_id: str | None = None
    variant_name: str | None = None
    clickfunnels_product_id: str | None = None
    clickfunnels_variant_id: str | None = None
    course_ids: list[str] = Field(default_factory=list)
    legacy_course_id: str | None = None
    payment_type: PaymentType | None = None
    payment_count: int | None = None
    membership_level: str | None = None
    enrollment_handled_by: EnrollmentHandledBy | None = None
    extra: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, metadata: Mapping[str, Any] | None) -> "CheckoutMetadata":
        """Parse a Stripe metadata map."""
        raw = {
            str(k): str(v).strip()
            for k, v in dict(metadata or {}).items()
            if v is not None and str(v).strip() != ""
        }

        values: dict[str, Any] = {}
        for key, field_name in _KEY_MAP.items():
            if key in raw:
                values[field_name] = raw[key]

        version = raw.get("metadata_version")
        if version is not None:
            try:
                values["metadata_version"] = int(version)
            except ValueError:
                logger.warning("Unreadable metadata_version %r, assuming current", version)

        # Legacy single "name" field: split into first/last on first space
        if "name" in raw and "first_name" not in values and "last_name" not in values:
            first, _, last = raw["name"].partition(" ")
            values["first_name"] = first or None
            values["last_name"] = last.strip() or None

        values["course_ids"] = parse_course_ids(raw.get("clickfunnels_course_ids"))

        payment_type = raw.get("payment_type")
        if payment_type:
            try:
                values["payment_type"] = PaymentType(payment_type)
            except ValueError:
                logger.warning("Unknown payment_type %r in checkout metadata", payment_type)

        payment_count = raw.get("payment_count")
        if payment_count:
            try:
                values["payment_count"] = int(payment_count)
            except ValueError:
                logger.warning("Non-numeric payment_count %r in checkout metadata", payment_count)

        handled_by = raw.get("enrollment_handled_by")
        if handled_by:
            try:
                values["enrollment_handled_by"] = EnrollmentHandledBy(handled_by)
            except ValueError:
                logger.warning("Unknown enrollment_handled_by %r", handled_by)

        known = set(_KEY_MAP) | _SPECIAL_KEYS
        values["extra"] = {k: v for k, v in raw.items() if k not in known}

        return cls(**values)

    @property
    def handled_by_success_page(self) -> bool:
        return self.enrollment_handled_by == EnrollmentHandledBy.SUCCESS_PAGE

    @property
    def is_payment_plan(self) -> bool:
        return (
            self.payment_type == PaymentType.PAYMENT_PLAN
            and self.payment_count is not None
            and self.payment_count > 0
        )

    def with_legacy_course(self, course_ids: Iterable[str]) -> list[str]:
        """Deduplicate ``course_ids`` and append the deprecated single course ID."""
        ids = list(dict.fromkeys(course_ids))
        if self.legacy_course_id and self.legacy_course_id not in ids:
            ids.append(self.legacy_course_id)
        return ids
