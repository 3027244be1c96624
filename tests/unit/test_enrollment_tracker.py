"""Unit tests for IdempotencyTracker."""

import threading

from enrollment.models.enrollment import IdempotencyKey
from enrollment.services.enrollment_tracker import (
    IdempotencyTracker,
    get_enrollment_tracker,
    reset_enrollment_tracker,
)


class TestShouldProcess:
    def test_first_call_true_then_false(self):
        tracker = IdempotencyTracker()

        assert tracker.should_process("cs_1", 42, "eWbLVk") is True
        assert tracker.should_process("cs_1", 42, "eWbLVk") is False
        assert tracker.should_process("cs_1", 42, "eWbLVk") is False

    def test_triples_are_independent(self):
        tracker = IdempotencyTracker()

        assert tracker.should_process("cs_1", 42, "A") is True
        assert tracker.should_process("cs_1", 42, "B") is True
        assert tracker.should_process("cs_1", 43, "A") is True
        assert tracker.should_process("cs_2", 42, "A") is True
        assert len(tracker) == 4

    def test_concurrent_callers_see_exactly_one_true(self):
        tracker = IdempotencyTracker()
        results: list[bool] = []
        barrier = threading.Barrier(16)

        def worker():
            barrier.wait()
            results.append(tracker.should_process("cs_race", 7, "course"))

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 15


class TestBoundedTracker:
    def test_max_entries_evicts_oldest(self):
        tracker = IdempotencyTracker(max_entries=2)

        tracker.should_process("cs", 1, "A")
        tracker.should_process("cs", 1, "B")
        tracker.should_process("cs", 1, "C")

        assert len(tracker) == 2
        # A was evicted and is new again
        assert tracker.should_process("cs", 1, "A") is True

    def test_ttl_expiry(self, monkeypatch):
        now = [1000.0]
        monkeypatch.setattr(
            "enrollment.services.enrollment_tracker.time.monotonic", lambda: now[0]
        )
        tracker = IdempotencyTracker(ttl_seconds=60)

        assert tracker.should_process("cs", 1, "A") is True
        now[0] += 30
        assert tracker.should_process("cs", 1, "A") is False
        now[0] += 31
        assert tracker.should_process("cs", 1, "A") is True

    def test_unbounded_by_default(self):
        tracker = IdempotencyTracker()
        for i in range(500):
            tracker.should_process("cs", i, "A")
        assert len(tracker) == 500


class TestIdempotencyKey:
    def test_string_form(self):
        key = IdempotencyKey(transaction_id="cs_1", contact_id=42, course_id="eWbLVk")
        assert str(key) == "cs_1_42_eWbLVk"


class TestSingleton:
    def test_shared_instance_and_reset(self):
        first = get_enrollment_tracker()
        assert get_enrollment_tracker() is first
        reset_enrollment_tracker()
        assert get_enrollment_tracker() is not first
