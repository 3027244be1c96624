"""Retry orchestration for course enrollments.

Courses are processed one at a time. Each course gets a bounded number of
attempts with a fixed pause in between; a course that keeps failing is
recorded and the remaining courses are still processed. A course that
another caller in this process is already enrolling is awaited, not repeated.
"""

import asyncio
import logging
from collections.abc import Iterable
from functools import lru_cache

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from enrollment.config import Settings, get_settings
from enrollment.models.enrollment import EnrollmentBatchResult, EnrollmentResult
from enrollment.models.enums import OriginationSource
from enrollment.services.clickfunnels_client import (
    ClickFunnelsClient,
    ClickFunnelsError,
    get_clickfunnels_client,
)
from enrollment.services.enrollment_tracker import IdempotencyTracker, get_enrollment_tracker
from enrollment.utils.logging import log_enrollment_operation

logger = logging.getLogger(__name__)


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _not_enrolled(result: EnrollmentResult) -> bool:
    return not (result.success or result.already_enrolled)


class EnrollmentService:
    """Enrolls a contact in a list of courses with retry and de-duplication.

    Usage:
        service = get_enrollment_service()
        batch = await service.enroll_in_courses(42, ["eWbLVk"], "cs_test_123")
        if not batch.success:
            ...  # batch.failed lists the courses to recover manually
    """

    def __init__(
        self,
        *,
        client: ClickFunnelsClient | None = None,
        tracker: IdempotencyTracker | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._client = client or get_clickfunnels_client()
        self._tracker = tracker or get_enrollment_tracker()
        self._max_attempts = max(1, settings.enrollment_max_attempts)
        self._retry_delay = settings.enrollment_retry_delay_seconds
        # Enrollments running in this process, resolved with whether they succeeded
        self._in_flight: dict[tuple[str, int, str], asyncio.Future[bool]] = {}

    async def _already_handled(
        self, contact_id: int, course_id: str, transaction_id: str
    ) -> bool:
        """Check whether a triple seen earlier in this process ended up enrolled."""
        try:
            active = await self._client.get_active_enrollments(
                contact_id, course_id, use_cache=False
            )
        except ClickFunnelsError as e:
            log_enrollment_operation(
                logger,
                "check_existing",
                contact_id=contact_id,
                course_id=course_id,
                transaction_id=transaction_id,
                result="skipped",
                error=str(e),
            )
            return False
        return bool(active)

    async def _enroll_with_retry(
        self,
        contact_id: int,
        course_id: str,
        transaction_id: str,
        origination_source: OriginationSource,
    ) -> tuple[bool, int]:
        """Try one course up to the attempt limit.

        Returns:
            Tuple of (succeeded, attempts_made).
        """
        attempts = 0

        def count_attempt(retry_state: RetryCallState) -> None:
            nonlocal attempts
            attempts = retry_state.attempt_number

        def log_failed_attempt(retry_state: RetryCallState) -> None:
            log_enrollment_operation(
                logger,
                "enroll_course",
                contact_id=contact_id,
                course_id=course_id,
                transaction_id=transaction_id,
                attempt=retry_state.attempt_number,
                result="failed",
                error=retry_state.outcome.result().error,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_fixed(self._retry_delay),
            retry=retry_if_result(_not_enrolled),
            before=count_attempt,
            after=log_failed_attempt,
            # Hand back the last failed result instead of raising RetryError
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            sleep=_sleep,
        )
        result = await retrying(self._client.enroll, contact_id, course_id, origination_source)

        if _not_enrolled(result):
            return False, attempts

        log_enrollment_operation(
            logger,
            "enroll_course",
            contact_id=contact_id,
            course_id=course_id,
            transaction_id=transaction_id,
            attempt=attempts,
            result="already_enrolled" if result.already_enrolled else "success",
        )
        return True, attempts

    async def enroll_in_courses(
        self,
        contact_id: int,
        course_ids: Iterable[str],
        transaction_id: str,
        *,
        origination_source: OriginationSource = OriginationSource.API,
    ) -> EnrollmentBatchResult:
        """Enroll a contact in every course, sequentially.

        Args:
            contact_id: ClickFunnels contact ID.
            course_ids: Courses to grant, in order. Duplicates are ignored.
            transaction_id: Checkout session (or other transaction) ID.
            origination_source: Which path is enrolling.

        Returns:
            Batch result; ``success`` is true iff no course failed.
        """
        batch = EnrollmentBatchResult()

        for course_id in dict.fromkeys(course_ids):
            key = (transaction_id, contact_id, course_id)
            if not self._tracker.should_process(transaction_id, contact_id, course_id):
                pending = self._in_flight.get(key)
                if pending is not None:
                    handled = await asyncio.shield(pending)
                else:
                    handled = await self._already_handled(contact_id, course_id, transaction_id)
                if handled:
                    batch.succeeded.append(course_id)
                else:
                    # The path that first saw this triple owns it
                    log_enrollment_operation(
                        logger,
                        "enroll_course",
                        contact_id=contact_id,
                        course_id=course_id,
                        transaction_id=transaction_id,
                        result="skipped",
                    )
                    batch.skipped.append(course_id)
                batch.attempts[course_id] = 0
                continue

            done: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
            self._in_flight[key] = done
            succeeded = False
            try:
                succeeded, attempts = await self._enroll_with_retry(
                    contact_id, course_id, transaction_id, origination_source
                )
            finally:
                del self._in_flight[key]
                done.set_result(succeeded)
            batch.attempts[course_id] = attempts
            if succeeded:
                batch.succeeded.append(course_id)
            else:
                batch.failed.append(course_id)

        log_enrollment_operation(
            logger,
            "enroll_in_courses",
            contact_id=contact_id,
            transaction_id=transaction_id,
            result="success" if batch.success else "failed",
            error=f"failed courses: {', '.join(batch.failed)}" if batch.failed else None,
            succeeded=batch.succeeded,
            skipped=batch.skipped,
        )
        return batch


@lru_cache(maxsize=1)
def get_enrollment_service() -> EnrollmentService:
    """Get the shared EnrollmentService instance (singleton pattern)."""
    return EnrollmentService()


def reset_enrollment_service() -> None:
    get_enrollment_service.cache_clear()
