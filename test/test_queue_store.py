"""Tests for the durable queue store."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from callqueue.queue.exceptions import ItemNotFoundError, LockLostError, StoreIOError
from callqueue.queue.models import (
    CallOutcome,
    CallResult,
    ItemKind,
    ItemStatus,
    TransitionStatus,
)
from callqueue.queue.store import QueueStore
from callqueue.scheduling.business_hours import BusinessCalendar

from conftest import FrozenClock

PARIS = ZoneInfo("Europe/Paris")


def outcome(result: CallResult | str, call_id: str = "conv-1", reason: str | None = None) -> CallOutcome:
    label = result.value if isinstance(result, CallResult) else result
    return CallOutcome(external_call_id=call_id, call_status="answered", result=label, reason=reason)


def run_attempt(store: QueueStore, item_id: str, result: CallResult | str):
    store.begin_processing(item_id)
    return store.complete_attempt(item_id, outcome(result))


class TestEnqueue:
    def test_defaults_to_now_when_open(
        self,
        store: QueueStore,
        clock: FrozenClock,
        refund_payload: dict[str, Any],
    ) -> None:
        result = store.enqueue(refund_payload)

        assert result.scheduled_for == clock.now
        stats = store.stats()
        assert stats.pending == 1
        assert stats.counters.total_requests == 1
        assert stats.next_items[0].reference == "ORD-1001"
        assert stats.next_items[0].kind == ItemKind.INITIAL

    def test_snaps_to_next_opening(
        self,
        store: QueueStore,
        clock: FrozenClock,
        refund_payload: dict[str, Any],
    ) -> None:
        clock.set(datetime(2025, 7, 26, 11, 0, tzinfo=PARIS))  # Saturday
        result = store.enqueue(refund_payload)
        assert result.scheduled_for == datetime(2025, 7, 28, 9, 0, tzinfo=PARIS)

    def test_explicit_schedule(self, store: QueueStore, refund_payload: dict[str, Any]) -> None:
        when = datetime(2025, 8, 1, 15, 0, tzinfo=PARIS)
        assert store.enqueue(refund_payload, scheduled_for=when).scheduled_for == when

    def test_ids_unique(self, store: QueueStore) -> None:
        ids = {store.enqueue({"reference": f"R{i}"}).id for i in range(5)}
        assert len(ids) == 5

    def test_reference_from_order(self, store: QueueStore) -> None:
        store.enqueue({"order": {"reference": "NESTED-1"}})
        assert store.stats().next_items[0].reference == "NESTED-1"

    def test_persisted_across_instances(
        self,
        store: QueueStore,
        queue_path: Path,
        refund_payload: dict[str, Any],
    ) -> None:
        result = store.enqueue(refund_payload)

        other = QueueStore(queue_path)
        assert [item.id for item in other.processing_items()] == []
        assert other.stats().next_items[0].id == result.id
        assert not queue_path.with_suffix(".lock").exists()


class TestDueItems:
    def test_due_and_future(self, store: QueueStore, clock: FrozenClock) -> None:
        due = store.enqueue({"reference": "now"})
        store.enqueue({"reference": "later"}, scheduled_for=clock.now + timedelta(hours=1))

        assert [item.id for item in store.due_items()] == [due.id]

        clock.advance(hours=1)
        assert len(store.due_items()) == 2

    def test_does_not_mutate(self, store: QueueStore) -> None:
        store.enqueue({"reference": "x"})
        store.due_items()
        assert store.stats().pending == 1


class TestBeginProcessing:
    def test_moves_to_processing(self, store: QueueStore, clock: FrozenClock) -> None:
        item_id = store.enqueue({"reference": "x"}).id

        item = store.begin_processing(item_id)

        assert item.status == ItemStatus.PROCESSING
        assert item.processing_started_at == clock.now
        stats = store.stats()
        assert (stats.pending, stats.processing) == (0, 1)

    def test_twice_raises(self, store: QueueStore) -> None:
        item_id = store.enqueue({"reference": "x"}).id
        store.begin_processing(item_id)

        with pytest.raises(ItemNotFoundError) as exc_info:
            store.begin_processing(item_id)

        assert exc_info.value.partition == "pending"
        assert store.stats().processing == 1

    def test_unknown_id(self, store: QueueStore, queue_path: Path) -> None:
        with pytest.raises(ItemNotFoundError):
            store.begin_processing("nope")
        assert not queue_path.with_suffix(".lock").exists()


class TestInFlightCall:
    def test_record_and_find(self, store: QueueStore) -> None:
        item_id = store.enqueue({"reference": "x"}).id
        store.begin_processing(item_id)

        store.record_call_started(item_id, "conv-42")

        found = store.find_processing_by_call("conv-42")
        assert found is not None and found.id == item_id
        assert found.call_started_at is not None
        assert store.find_processing_by_call("conv-other") is None

    def test_record_requires_processing(self, store: QueueStore) -> None:
        item_id = store.enqueue({"reference": "x"}).id
        with pytest.raises(ItemNotFoundError):
            store.record_call_started(item_id, "conv-1")

    def test_cleared_after_completion(self, store: QueueStore) -> None:
        item_id = store.enqueue({"reference": "x"}).id
        store.begin_processing(item_id)
        store.record_call_started(item_id, "conv-1")

        transition = store.complete_attempt(item_id, outcome(CallResult.NO_ANSWER))

        assert transition.item.external_call_id is None
        assert transition.item.call_started_at is None
        assert store.find_processing_by_call("conv-1") is None


class TestCompleteAttempt:
    def test_requires_processing(self, store: QueueStore) -> None:
        item_id = store.enqueue({"reference": "x"}).id
        with pytest.raises(ItemNotFoundError):
            store.complete_attempt(item_id, outcome(CallResult.ACCEPTED))
        assert store.stats().pending == 1

    @pytest.mark.parametrize("result", [CallResult.ACCEPTED, CallResult.REJECTED])
    def test_terminal_success(self, store: QueueStore, clock: FrozenClock, result: CallResult) -> None:
        item_id = store.enqueue({"reference": "x"}).id

        transition = run_attempt(store, item_id, result)

        assert transition.status == TransitionStatus.COMPLETED
        assert transition.next_attempt is None
        item = transition.item
        assert item.status == ItemStatus.COMPLETED
        assert item.completed_at == clock.now
        assert item.last_result == result.value
        assert item.attempts.total == len(item.history) == 1
        stats = store.stats()
        assert (stats.pending, stats.processing, stats.completed) == (0, 0, 1)
        assert stats.counters.successful_calls == 1

    def test_callback_reschedules(self, store: QueueStore) -> None:
        item_id = store.enqueue({"reference": "x"}).id

        transition = run_attempt(store, item_id, CallResult.CALLBACK_REQUESTED)

        assert transition.status == TransitionStatus.RESCHEDULED
        # Monday 10:00 + 120 min = 12:00, lunch break -> 14:00.
        assert transition.next_attempt == datetime(2025, 7, 28, 14, 0, tzinfo=PARIS)
        item = transition.item
        assert item.kind == ItemKind.CALLBACK
        assert item.status == ItemStatus.PENDING
        assert item.attempts.callback_requests == 1
        assert item.attempts.technical_failures == 0
        assert store.stats().counters.callbacks_requested == 1

    def test_callback_ceiling(self, store: QueueStore) -> None:
        item_id = store.enqueue({"reference": "x"}).id

        run_attempt(store, item_id, CallResult.CALLBACK_REQUESTED)
        run_attempt(store, item_id, CallResult.CALLBACK_REQUESTED)
        transition = run_attempt(store, item_id, CallResult.CALLBACK_REQUESTED)

        assert transition.status == TransitionStatus.FAILED
        assert transition.item.failure_reason == "too many callbacks (max 3)"
        assert transition.item.failed_at is not None
        stats = store.stats()
        assert (stats.pending, stats.failed) == (0, 1)
        assert stats.counters.failed_calls == 1
        assert stats.counters.callbacks_requested == 2

    @pytest.mark.parametrize("result", [CallResult.NO_ANSWER, CallResult.VOICEMAIL, CallResult.FAILED])
    def test_technical_failure_reschedules(self, store: QueueStore, result: CallResult) -> None:
        item_id = store.enqueue({"reference": "x"}).id

        transition = run_attempt(store, item_id, result)

        assert transition.status == TransitionStatus.RESCHEDULED
        assert transition.item.kind == ItemKind.RETRY
        assert transition.item.attempts.technical_failures == 1
        assert transition.next_attempt == datetime(2025, 7, 28, 14, 0, tzinfo=PARIS)

    def test_technical_delay_from_afternoon(self, store: QueueStore, clock: FrozenClock) -> None:
        clock.set(datetime(2025, 7, 28, 14, 0, tzinfo=PARIS))
        item_id = store.enqueue({"reference": "x"}).id

        transition = run_attempt(store, item_id, CallResult.NO_ANSWER)

        # 14:30 lands in the afternoon window -> next morning -> Tuesday 14:00.
        assert transition.next_attempt == datetime(2025, 7, 29, 14, 0, tzinfo=PARIS)

    def test_technical_ceiling(self, store: QueueStore) -> None:
        item_id = store.enqueue({"reference": "x"}).id

        run_attempt(store, item_id, CallResult.NO_ANSWER)
        run_attempt(store, item_id, CallResult.VOICEMAIL)
        transition = run_attempt(store, item_id, CallResult.FAILED)

        assert transition.status == TransitionStatus.FAILED
        assert transition.item.failure_reason == "too many technical failures (max 3)"
        assert transition.item.attempts.total == 3
        assert store.stats().counters.failed_calls == 1

    def test_unknown_label_is_technical_failure(self, store: QueueStore) -> None:
        item_id = store.enqueue({"reference": "x"}).id

        transition = run_attempt(store, item_id, "line_busy")

        assert transition.status == TransitionStatus.RESCHEDULED
        assert transition.item.attempts.technical_failures == 1
        assert transition.item.last_result == "line_busy"

    def test_counters_are_independent(self, store: QueueStore) -> None:
        item_id = store.enqueue({"reference": "x"}).id

        run_attempt(store, item_id, CallResult.CALLBACK_REQUESTED)
        run_attempt(store, item_id, CallResult.CALLBACK_REQUESTED)
        run_attempt(store, item_id, CallResult.NO_ANSWER)
        transition = run_attempt(store, item_id, CallResult.FAILED)

        assert transition.status == TransitionStatus.RESCHEDULED
        assert transition.item.attempts.callback_requests == 2
        assert transition.item.attempts.technical_failures == 2

    def test_success_after_reschedules(self, store: QueueStore) -> None:
        item_id = store.enqueue({"reference": "x"}).id

        run_attempt(store, item_id, CallResult.NO_ANSWER)
        run_attempt(store, item_id, CallResult.CALLBACK_REQUESTED)
        transition = run_attempt(store, item_id, CallResult.ACCEPTED)

        item = transition.item
        assert transition.status == TransitionStatus.COMPLETED
        assert item.attempts.total == len(item.history) == 3
        assert [record.result for record in item.history] == ["no_answer", "callback_requested", "accepted"]
        assert store.stats().counters.successful_calls == 1

    def test_history_records_outcome(self, store: QueueStore, clock: FrozenClock) -> None:
        item_id = store.enqueue({"reference": "x"}).id
        store.begin_processing(item_id)

        transition = store.complete_attempt(
            item_id,
            CallOutcome(external_call_id="conv-9", call_status="answered", result="rejected", reason="Hors délai"),
        )

        record = transition.item.history[0]
        assert record.timestamp == clock.now
        assert record.external_call_id == "conv-9"
        assert record.call_status == "answered"
        assert record.reason == "Hors délai"


class TestStats:
    def test_next_items_sorted_and_limited(self, store: QueueStore, clock: FrozenClock) -> None:
        for hours in (6, 1, 5, 2, 4, 3):
            store.enqueue({"reference": f"R{hours}"}, scheduled_for=clock.now + timedelta(hours=hours))

        stats = store.stats()

        assert stats.pending == 6
        assert [item.reference for item in stats.next_items] == ["R1", "R2", "R3", "R4", "R5"]
        assert all(item.total_attempts == 0 for item in stats.next_items)


class TestCleanup:
    def test_removes_old_terminal_items(self, store: QueueStore, clock: FrozenClock) -> None:
        done = store.enqueue({"reference": "done"}).id
        run_attempt(store, done, CallResult.ACCEPTED)
        failed = store.enqueue({"reference": "failed"}).id
        for _ in range(3):
            run_attempt(store, failed, CallResult.NO_ANSWER)
        store.enqueue({"reference": "pending"})

        clock.advance(days=7, minutes=1)
        result = store.cleanup()

        assert (result.removed_completed, result.removed_failed) == (1, 1)
        stats = store.stats()
        assert (stats.pending, stats.completed, stats.failed) == (1, 0, 0)
        assert stats.counters.successful_calls == 1

    def test_keeps_recent_items(self, store: QueueStore, clock: FrozenClock) -> None:
        item_id = store.enqueue({"reference": "x"}).id
        run_attempt(store, item_id, CallResult.REJECTED)

        clock.advance(days=7)
        result = store.cleanup()

        assert (result.removed_completed, result.removed_failed) == (0, 0)
        assert store.stats().completed == 1

    def test_never_touches_processing(self, store: QueueStore, clock: FrozenClock) -> None:
        item_id = store.enqueue({"reference": "x"}).id
        store.begin_processing(item_id)
        store.record_call_started(item_id, "conv-1")

        clock.advance(days=30)
        result = store.cleanup()

        assert (result.removed_completed, result.removed_failed) == (0, 0)
        assert store.stats().processing == 1
        assert store.find_processing_by_call("conv-1") is not None

    def test_custom_retention(self, store: QueueStore, clock: FrozenClock) -> None:
        item_id = store.enqueue({"reference": "x"}).id
        run_attempt(store, item_id, CallResult.ACCEPTED)

        clock.advance(hours=2)
        assert store.cleanup(timedelta(hours=1)).removed_completed == 1


class TestPersistence:
    def test_missing_keys_defaulted(self, queue_path: Path, calendar: BusinessCalendar) -> None:
        queue_path.write_text(json.dumps({"pending": []}))
        stats = QueueStore(queue_path, calendar=calendar).stats()
        assert stats.processing == 0
        assert stats.counters.total_requests == 0

    def test_corrupted_document(self, queue_path: Path) -> None:
        queue_path.write_text("{not json")
        store = QueueStore(queue_path)

        with pytest.raises(StoreIOError):
            store.stats()
        assert not queue_path.with_suffix(".lock").exists()

    def test_document_layout(self, store: QueueStore, queue_path: Path) -> None:
        store.enqueue({"reference": "x"})
        data = json.loads(queue_path.read_text())
        assert set(data) == {"pending", "processing", "completed", "failed", "counters"}
        assert data["pending"][0]["status"] == "pending"

    def test_refuses_to_write_after_losing_lock(
        self,
        store: QueueStore,
        queue_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        original_load = store._load

        def load_then_lose_lock():
            document = original_load()
            store.lock.path.write_text(json.dumps({"holder": "other", "token": "other"}))
            return document

        monkeypatch.setattr(store, "_load", load_then_lose_lock)

        with pytest.raises(LockLostError):
            store.enqueue({"reference": "x"})

        assert not queue_path.exists()
        # The new holder's marker is left alone.
        assert json.loads(store.lock.path.read_text())["token"] == "other"
