"""ClickFunnels v2 API client for contacts and course enrollments.

Remote failures are reported as typed results (``UpsertResult``,
``EnrollmentResult``) so the reconciliation pipeline never has to catch
them. Only configuration problems raise.
"""

import logging
import time
from functools import lru_cache
from typing import Any

import httpx

from enrollment.config import ConfigurationError, SecretName, Settings, get_secret, get_settings
from enrollment.models.contact import Contact, ContactUpsert, UpsertResult
from enrollment.models.enrollment import EnrollmentResult
from enrollment.models.enums import OriginationSource
from enrollment.services.http_client import fetch_with_rate_limiting
from enrollment.utils.logging import log_enrollment_operation

logger = logging.getLogger(__name__)

ENROLLMENT_CACHE_TTL_SECONDS = 60.0

# Phrases ClickFunnels uses when a (contact, course) enrollment already exists
_ALREADY_ENROLLED_MARKERS = ("already", "taken", "exists")


class ClickFunnelsError(Exception):
    """Raised internally when a ClickFunnels call fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


def error_detail(response: httpx.Response) -> str:
    """Extract human-readable error text from a ClickFunnels error response.

    Structured bodies (``{"errors": [{"detail": ...}]}``) are joined with
    ", "; anything else falls back to the status code.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            parts = []
            for err in errors:
                if isinstance(err, dict):
                    parts.append(str(err.get("detail") or err.get("message") or err))
                else:
                    parts.append(str(err))
            return ", ".join(parts)
        if isinstance(errors, dict) and errors:
            parts = []
            for field, messages in errors.items():
                if isinstance(messages, list):
                    messages = ", ".join(str(m) for m in messages)
                parts.append(f"{field} {messages}")
            return ", ".join(parts)
        for key in ("detail", "message", "error"):
            if body.get(key):
                return str(body[key])

    return f"HTTP {response.status_code}"


def _parse_contact(data: dict[str, Any]) -> Contact:
    tags: list[str] = []
    for tag in data.get("tags") or []:
        if isinstance(tag, dict):
            name = tag.get("name")
            if name:
                tags.append(str(name))
        elif tag:
            tags.append(str(tag))

    custom = data.get("custom_attributes") or {}
    return Contact(
        id=int(data["id"]),
        email=data.get("email_address") or "",
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        phone=data.get("phone_number"),
        tags=tags,
        custom_fields={str(k): "" if v is None else str(v) for k, v in custom.items()},
    )


def _merge_tags(existing: list[str], new: list[str] | None) -> list[str]:
    merged = list(existing)
    for tag in new or []:
        if tag not in merged:
            merged.append(tag)
    return merged


class ClickFunnelsClient:
    """Async client for the ClickFunnels workspace API.

    Usage:
        client = get_clickfunnels_client()
        upsert = await client.upsert_contact(ContactUpsert(email="a@b.nl"))
        if upsert.success:
            await client.enroll(upsert.contact_id, "eWbLVk")
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        api_token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        cache_ttl_seconds: float = ENROLLMENT_CACHE_TTL_SECONDS,
    ) -> None:
        self._settings = settings or get_settings()
        self._api_token = api_token
        self._http = http_client
        self._cache_ttl = cache_ttl_seconds
        self._enrollment_cache: dict[tuple[int, str], tuple[float, list[dict[str, Any]]]] = {}

    def _get_http(self) -> httpx.AsyncClient:
        """Get or create the HTTP client (lazy initialization).

        Raises:
            ConfigurationError: If the API token or subdomain is missing.
        """
        if self._http is None:
            token = self._api_token or get_secret(SecretName.CLICKFUNNELS_API_TOKEN)
            self._http = httpx.AsyncClient(
                base_url=self._settings.clickfunnels_base_url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
                timeout=30.0,
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await fetch_with_rate_limiting(
                self._get_http(),
                method,
                path,
                max_retries=self._settings.http_max_retries,
                base_delay=self._settings.http_base_delay_seconds,
                max_retry_after=self._settings.http_max_retry_after_seconds,
                **kwargs,
            )
        except httpx.HTTPError as e:
            raise ClickFunnelsError(f"ClickFunnels request failed: {e}") from e

    def _workspace_path(self, suffix: str) -> str:
        workspace_id = self._settings.clickfunnels_workspace_id
        if not workspace_id:
            raise ConfigurationError(
                "ClickFunnels workspace ID is not configured",
                setting="CLICKFUNNELS_WORKSPACE_ID",
            )
        return f"/workspaces/{workspace_id}{suffix}"

    # === Contacts ===

    async def find_contact_by_email(self, email: str) -> Contact | None:
        """Look up a contact by exact email address.

        Raises:
            ClickFunnelsError: If the lookup request fails.
        """
        response = await self._request(
            "GET",
            self._workspace_path("/contacts"),
            params={"filter[email_address]": email},
        )
        if not response.is_success:
            detail = error_detail(response)
            raise ClickFunnelsError(
                f"Contact lookup failed: {detail}",
                status_code=response.status_code,
                detail=detail,
            )

        body = response.json()
        records = body if isinstance(body, list) else body.get("data") or []
        for record in records:
            # The filter is a prefix match on some workspaces
            if (record.get("email_address") or "") == email:
                return _parse_contact(record)
        return None

    @staticmethod
    def _contact_payload(data: ContactUpsert, tags: list[str] | None) -> dict[str, Any]:
        payload: dict[str, Any] = {"email_address": data.email}
        if data.first_name is not None:
            payload["first_name"] = data.first_name
        if data.last_name is not None:
            payload["last_name"] = data.last_name
        if data.phone is not None:
            payload["phone_number"] = data.phone
        if tags:
            payload["tags"] = tags
        if data.custom_fields:
            payload["custom_attributes"] = dict(data.custom_fields)
        return payload

    async def _create_contact(self, data: ContactUpsert) -> int:
        response = await self._request(
            "POST",
            self._workspace_path("/contacts"),
            json={"contact": self._contact_payload(data, data.tags)},
        )
        if not response.is_success:
            detail = error_detail(response)
            raise ClickFunnelsError(
                f"Contact creation failed: {detail}",
                status_code=response.status_code,
                detail=detail,
            )
        try:
            return int(response.json()["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise ClickFunnelsError(f"Contact creation returned no ID: {e}") from e

    async def _update_contact(self, existing: Contact, data: ContactUpsert) -> None:
        tags = _merge_tags(existing.tags, data.tags) if data.tags else None
        payload = self._contact_payload(data, tags)
        if len(payload) == 1:
            # Email only: nothing to write
            return

        await self._put_contact(existing.id, payload)

    async def _put_contact(self, contact_id: int, payload: dict[str, Any]) -> None:
        response = await self._request(
            "PUT", f"/contacts/{contact_id}", json={"contact": payload}
        )
        if not response.is_success:
            detail = error_detail(response)
            raise ClickFunnelsError(
                f"Contact update failed: {detail}",
                status_code=response.status_code,
                detail=detail,
            )

    async def upsert_contact(self, data: ContactUpsert) -> UpsertResult:
        """Find-or-create a contact keyed by email.

        Existing contacts get tags merged and custom fields overwritten per
        key. Fields that are not set are left out of the request entirely.

        Raises:
            ConfigurationError: If ClickFunnels is not configured.
        """
        try:
            existing = await self.find_contact_by_email(data.email)
            if existing is None:
                contact_id = await self._create_contact(data)
            else:
                await self._update_contact(existing, data)
                contact_id = existing.id
        except ClickFunnelsError as e:
            log_enrollment_operation(logger, "upsert_contact", result="failed", error=str(e))
            return UpsertResult(success=False, error=str(e))

        log_enrollment_operation(
            logger,
            "upsert_contact",
            contact_id=contact_id,
            result="success",
            new_contact=existing is None,
        )
        return UpsertResult(success=True, contact_id=contact_id, created=existing is None)

    async def update_contact(
        self,
        contact: Contact,
        *,
        tags: list[str] | None = None,
        custom_fields: dict[str, str] | None = None,
    ) -> UpsertResult:
        """Add tags and set custom fields on a contact that was already looked up."""
        data = ContactUpsert(
            email=contact.email,
            tags=tags or None,
            custom_fields=custom_fields or None,
        )
        try:
            await self._update_contact(contact, data)
        except ClickFunnelsError as e:
            log_enrollment_operation(
                logger, "update_contact", contact_id=contact.id, result="failed", error=str(e)
            )
            return UpsertResult(success=False, contact_id=contact.id, error=str(e))

        log_enrollment_operation(
            logger, "update_contact", contact_id=contact.id, result="success"
        )
        return UpsertResult(success=True, contact_id=contact.id)

    async def update_contact_fields(
        self, contact_id: int, custom_fields: dict[str, str]
    ) -> UpsertResult:
        """Overwrite custom fields on a contact by ID, without an email lookup."""
        try:
            await self._put_contact(contact_id, {"custom_attributes": dict(custom_fields)})
        except ClickFunnelsError as e:
            log_enrollment_operation(
                logger, "update_contact", contact_id=contact_id, result="failed", error=str(e)
            )
            return UpsertResult(success=False, contact_id=contact_id, error=str(e))

        log_enrollment_operation(
            logger, "update_contact", contact_id=contact_id, result="success"
        )
        return UpsertResult(success=True, contact_id=contact_id)

    # === Enrollments ===

    async def get_active_enrollments(
        self, contact_id: int, course_id: str, *, use_cache: bool = True
    ) -> list[dict[str, Any]]:
        """List non-suspended enrollments of a contact in a course.

        Raises:
            ClickFunnelsError: If the lookup request fails.
        """
        key = (contact_id, course_id)
        if use_cache and key in self._enrollment_cache:
            stored_at, cached = self._enrollment_cache[key]
            if time.monotonic() - stored_at < self._cache_ttl:
                return cached

        response = await self._request(
            "GET",
            f"/courses/{course_id}/enrollments",
            params={"filter[contact_id]": str(contact_id)},
        )
        if not response.is_success:
            detail = error_detail(response)
            raise ClickFunnelsError(
                f"Enrollment lookup failed: {detail}",
                status_code=response.status_code,
                detail=detail,
            )

        body = response.json()
        records = body if isinstance(body, list) else body.get("data") or []
        active = [r for r in records if r.get("suspended") is not True]
        self._enrollment_cache[key] = (time.monotonic(), active)
        return active

    def invalidate_enrollment_cache(self, contact_id: int, course_id: str) -> None:
        self._enrollment_cache.pop((contact_id, course_id), None)

    def clear_cache(self) -> None:
        self._enrollment_cache.clear()

    async def enroll(
        self,
        contact_id: int,
        course_id: str,
        origination_source_type: OriginationSource | str = OriginationSource.API,
        origination_source_id: int = 1,
    ) -> EnrollmentResult:
        """Grant a course to a contact, treating an existing enrollment as success.

        Args:
            contact_id: ClickFunnels contact ID.
            course_id: Course ID (opaque string such as "eWbLVk").
            origination_source_type: Which path created the enrollment.
            origination_source_id: Source record ID reported to ClickFunnels.

        Returns:
            EnrollmentResult; ``already_enrolled`` is set when the pre-check
            or a conflict response shows the enrollment exists.

        Raises:
            ConfigurationError: If ClickFunnels is not configured.
        """
        try:
            existing = await self.get_active_enrollments(contact_id, course_id)
        except ClickFunnelsError as e:
            # The create call below still reports conflicts as success
            logger.warning(
                "Enrollment pre-check failed for contact %s course %s: %s",
                contact_id,
                course_id,
                e,
            )
            existing = []

        if existing:
            log_enrollment_operation(
                logger,
                "enroll",
                contact_id=contact_id,
                course_id=course_id,
                result="already_enrolled",
            )
            return EnrollmentResult(success=True, already_enrolled=True, data=existing[0])

        source = (
            origination_source_type.value
            if isinstance(origination_source_type, OriginationSource)
            else origination_source_type
        )
        body = {
            "courses_enrollment": {
                "contact_id": contact_id,
                "suspended": False,
                "origination_source_type": source,
                "origination_source_id": origination_source_id,
            }
        }

        try:
            response = await self._request(
                "POST", f"/courses/{course_id}/enrollments", json=body
            )
        except ClickFunnelsError as e:
            log_enrollment_operation(
                logger,
                "enroll",
                contact_id=contact_id,
                course_id=course_id,
                result="failed",
                error=str(e),
            )
            return EnrollmentResult(success=False, error=str(e))

        if response.is_success:
            self.invalidate_enrollment_cache(contact_id, course_id)
            try:
                data = response.json()
            except ValueError:
                data = None
            log_enrollment_operation(
                logger, "enroll", contact_id=contact_id, course_id=course_id, result="success"
            )
            return EnrollmentResult(
                success=True, data=data if isinstance(data, dict) else None
            )

        detail = error_detail(response)
        if response.status_code == 409 or (
            response.status_code == 422
            and any(marker in detail.lower() for marker in _ALREADY_ENROLLED_MARKERS)
        ):
            self.invalidate_enrollment_cache(contact_id, course_id)
            log_enrollment_operation(
                logger,
                "enroll",
                contact_id=contact_id,
                course_id=course_id,
                result="already_enrolled",
                status_code=response.status_code,
            )
            return EnrollmentResult(success=True, already_enrolled=True)

        error = f"ClickFunnels Enrollment API error: {detail}"
        log_enrollment_operation(
            logger,
            "enroll",
            contact_id=contact_id,
            course_id=course_id,
            result="failed",
            error=error,
            status_code=response.status_code,
        )
        return EnrollmentResult(success=False, error=error)


@lru_cache(maxsize=1)
def get_clickfunnels_client() -> ClickFunnelsClient:
    """Get the shared ClickFunnelsClient instance (singleton pattern)."""
    return ClickFunnelsClient()


def reset_clickfunnels_client() -> None:
    """Drop the shared client (for testing)."""
    get_clickfunnels_client.cache_clear()
