"""In-process guard against duplicate enrollment attempts.

Remembers (transaction, contact, course) triples seen during the lifetime of
this process. It is an optimization that keeps the webhook and success-page
paths from both calling ClickFunnels for the same enrollment; the remote
pre-check in ``ClickFunnelsClient.enroll`` remains the source of truth.
Nothing is shared across processes or survives a restart.
"""

import logging
import threading
import time
from collections import OrderedDict
from functools import lru_cache

from enrollment.models.enrollment import IdempotencyKey

logger = logging.getLogger(__name__)


class IdempotencyTracker:
    """Insert-if-absent set of idempotency keys.

    By default entries never expire. ``max_entries`` and ``ttl_seconds`` turn
    it into a bounded LRU for long-running processes.
    """

    def __init__(
        self,
        *,
        max_entries: int | None = None,
        ttl_seconds: float | None = None,
    ) -> None:
        self._seen: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._ttl = ttl_seconds

    def should_process(self, transaction_id: str, contact_id: int, course_id: str) -> bool:
        """Mark a triple as seen.

        Returns:
            True the first time the triple is seen, False on every later call.
        """
        key = str(
            IdempotencyKey(
                transaction_id=transaction_id, contact_id=contact_id, course_id=course_id
            )
        )
        now = time.monotonic()

        with self._lock:
            seen_at = self._seen.get(key)
            if seen_at is not None and (self._ttl is None or now - seen_at < self._ttl):
                logger.info(
                    "Enrollment already processed for session %s, contact %s, course %s",
                    transaction_id,
                    contact_id,
                    course_id,
                )
                return False

            self._seen[key] = now
            self._seen.move_to_end(key)
            if self._max_entries is not None:
                while len(self._seen) > self._max_entries:
                    self._seen.popitem(last=False)

        logger.info(
            "Tracking new enrollment for session %s, contact %s, course %s",
            transaction_id,
            contact_id,
            course_id,
        )
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()


@lru_cache(maxsize=1)
def get_enrollment_tracker() -> IdempotencyTracker:
    """Get the process-wide tracker (singleton pattern)."""
    return IdempotencyTracker()


def reset_enrollment_tracker() -> None:
    """Drop the process-wide tracker (for testing)."""
    get_enrollment_tracker.cache_clear()
