"""
Durable call queue backed by a JSON document and an advisory lock file.

Every public operation runs one locked cycle: acquire the lock, load the
document, apply a single transition, persist atomically, release the lock.
Several processes may share the same files.
"""

from __future__ import annotations

import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from pydantic import ValidationError as PydanticValidationError

from callqueue.queue.exceptions import ItemNotFoundError, StoreIOError
from callqueue.queue.lock import QueueLock
from callqueue.queue.models import (
    TERMINAL_RESULTS,
    AttemptRecord,
    CallOutcome,
    CallResult,
    CleanupResult,
    EnqueueResult,
    ItemKind,
    ItemStatus,
    QueueDocument,
    QueueItem,
    QueueStats,
    TransitionResult,
    TransitionStatus,
    UpcomingItem,
)
from callqueue.scheduling.business_hours import BusinessCalendar
from callqueue.scheduling.retry_policy import max_attempts, retry_delay
from callqueue.shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_RETENTION = timedelta(days=7)
NEXT_ITEMS_LIMIT = 5

MAX_CALLBACK_REQUESTS = max_attempts(CallResult.CALLBACK_REQUESTED.value)
MAX_TECHNICAL_FAILURES = max_attempts(CallResult.FAILED.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


class QueueStore:
    """The only mutator of the persisted queue document."""

    def __init__(
        self,
        queue_path: Path | str,
        lock_path: Path | str | None = None,
        *,
        calendar: BusinessCalendar | None = None,
        clock: Callable[[], datetime] = _utcnow,
        lock_timeout: float = 10.0,
        lock_stale_after: float = 30.0,
        lock_poll_interval: float = 0.1,
    ) -> None:
        self._path = Path(queue_path)
        self._clock = clock
        self._calendar = calendar or BusinessCalendar(clock=clock)
        self._lock = QueueLock(
            Path(lock_path) if lock_path is not None else self._path.with_suffix(".lock"),
            timeout=lock_timeout,
            stale_after=lock_stale_after,
            poll_interval=lock_poll_interval,
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock(self) -> QueueLock:
        return self._lock

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def enqueue(
        self,
        payload: dict[str, Any],
        scheduled_for: datetime | None = None,
    ) -> EnqueueResult:
        """Add a new item to the pending partition."""
        with self._transaction() as document:
            now = self._now()
            if scheduled_for is not None:
                scheduled = _as_utc(scheduled_for)
            else:
                scheduled = self._calendar.next_business_time(now)
            item = QueueItem(
                id=str(uuid.uuid4()),
                created_at=now,
                scheduled_for=scheduled,
                kind=ItemKind.INITIAL,
                payload=payload,
            )
            document.put(ItemStatus.PENDING, item)
            document.counters.total_requests += 1

            logger.info(
                "Request queued",
                extra={
                    "item_id": item.id,
                    "scheduled_for": scheduled.isoformat(),
                    "reference": item.reference,
                },
            )
            return EnqueueResult(id=item.id, scheduled_for=scheduled)

    def due_items(self) -> list[QueueItem]:
        """Pending items whose ``scheduled_for`` has passed. Order is unspecified."""
        with self._snapshot() as document:
            now = self._now()
            return [item for item in document.pending if item.scheduled_for <= now]

    def begin_processing(self, item_id: str) -> QueueItem:
        """Move an item from pending to processing.

        Raises:
            ItemNotFoundError: The item is not in pending (including when it is
                already processing or terminated).
        """
        with self._transaction() as document:
            item = document.take(ItemStatus.PENDING, item_id)
            if item is None:
                raise ItemNotFoundError(item_id, ItemStatus.PENDING.value)
            item.processing_started_at = self._now()
            document.put(ItemStatus.PROCESSING, item)
            return item

    def record_call_started(self, item_id: str, external_call_id: str) -> QueueItem:
        """Attach the voice-agent conversation id to a processing item."""
        with self._transaction() as document:
            item = self._find(document, ItemStatus.PROCESSING, item_id)
            if item is None:
                raise ItemNotFoundError(item_id, ItemStatus.PROCESSING.value)
            item.external_call_id = external_call_id
            item.call_started_at = self._now()
            return item

    def processing_items(self) -> list[QueueItem]:
        with self._snapshot() as document:
            return list(document.processing)

    def find_processing_by_call(self, external_call_id: str) -> QueueItem | None:
        with self._snapshot() as document:
            for item in document.processing:
                if item.external_call_id == external_call_id:
                    return item
            return None

    def complete_attempt(self, item_id: str, outcome: CallOutcome) -> TransitionResult:
        """Record the outcome of an attempt and decide what happens next.

        ``accepted``/``rejected`` terminate the item successfully.
        ``callback_requested`` reschedules with the callback delays until the
        callback ceiling is hit. Every other label is a technical failure and
        is rescheduled with its own delays until the technical ceiling is hit.

        Raises:
            ItemNotFoundError: The item is not in processing.
        """
        with self._transaction() as document:
            item = document.take(ItemStatus.PROCESSING, item_id)
            if item is None:
                raise ItemNotFoundError(item_id, ItemStatus.PROCESSING.value)

            now = self._now()
            item.history.append(
                AttemptRecord(
                    timestamp=now,
                    external_call_id=outcome.external_call_id,
                    call_status=outcome.call_status,
                    result=outcome.result,
                    reason=outcome.reason,
                )
            )
            item.attempts.total += 1
            item.last_result = outcome.result
            item.external_call_id = None
            item.call_started_at = None

            if outcome.result in TERMINAL_RESULTS:
                return self._complete(document, item, now)
            if outcome.result == CallResult.CALLBACK_REQUESTED.value:
                return self._handle_callback(document, item, now)
            return self._handle_technical_failure(document, item, outcome.result, now)

    def stats(self) -> QueueStats:
        """Partition sizes, counters and the next pending items."""
        with self._snapshot() as document:
            upcoming = sorted(document.pending, key=lambda item: item.scheduled_for)
            return QueueStats(
                pending=len(document.pending),
                processing=len(document.processing),
                completed=len(document.completed),
                failed=len(document.failed),
                counters=document.counters.model_copy(),
                next_items=[
                    UpcomingItem(
                        id=item.id,
                        reference=item.reference,
                        scheduled_for=item.scheduled_for,
                        kind=item.kind,
                        total_attempts=item.attempts.total,
                    )
                    for item in upcoming[:NEXT_ITEMS_LIMIT]
                ],
            )

    def cleanup(self, retention: timedelta = DEFAULT_RETENTION) -> CleanupResult:
        """Drop completed/failed items terminated more than ``retention`` ago."""
        with self._transaction() as document:
            cutoff = self._now() - retention
            before_completed = len(document.completed)
            before_failed = len(document.failed)

            document.completed = [item for item in document.completed if item.terminated_at >= cutoff]
            document.failed = [item for item in document.failed if item.terminated_at >= cutoff]

            result = CleanupResult(
                removed_completed=before_completed - len(document.completed),
                removed_failed=before_failed - len(document.failed),
            )
            if result.removed_completed or result.removed_failed:
                logger.info(
                    "Old queue items removed",
                    extra={
                        "removed_completed": result.removed_completed,
                        "removed_failed": result.removed_failed,
                    },
                )
            return result

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _complete(self, document: QueueDocument, item: QueueItem, now: datetime) -> TransitionResult:
        item.completed_at = now
        document.put(ItemStatus.COMPLETED, item)
        document.counters.successful_calls += 1

        logger.info(
            "Request completed",
            extra={"item_id": item.id, "result": item.last_result, "reference": item.reference},
        )
        return TransitionResult(status=TransitionStatus.COMPLETED, item=item)

    def _handle_callback(self, document: QueueDocument, item: QueueItem, now: datetime) -> TransitionResult:
        item.attempts.callback_requests += 1
        if item.attempts.callback_requests >= MAX_CALLBACK_REQUESTS:
            return self._fail(
                document,
                item,
                now,
                f"too many callbacks (max {MAX_CALLBACK_REQUESTS})",
            )

        next_attempt = self._reschedule(
            document,
            item,
            now,
            kind=ItemKind.CALLBACK,
            category=CallResult.CALLBACK_REQUESTED.value,
            attempt=item.attempts.callback_requests,
        )
        document.counters.callbacks_requested += 1
        return TransitionResult(status=TransitionStatus.RESCHEDULED, item=item, next_attempt=next_attempt)

    def _handle_technical_failure(
        self,
        document: QueueDocument,
        item: QueueItem,
        result: str,
        now: datetime,
    ) -> TransitionResult:
        item.attempts.technical_failures += 1
        if item.attempts.technical_failures >= MAX_TECHNICAL_FAILURES:
            return self._fail(
                document,
                item,
                now,
                f"too many technical failures (max {MAX_TECHNICAL_FAILURES})",
            )

        next_attempt = self._reschedule(
            document,
            item,
            now,
            kind=ItemKind.RETRY,
            category=result,
            attempt=item.attempts.technical_failures,
        )
        return TransitionResult(status=TransitionStatus.RESCHEDULED, item=item, next_attempt=next_attempt)

    def _reschedule(
        self,
        document: QueueDocument,
        item: QueueItem,
        now: datetime,
        *,
        kind: ItemKind,
        category: str,
        attempt: int,
    ) -> datetime:
        next_attempt = self._calendar.next_business_time(now, retry_delay(category, attempt))
        item.scheduled_for = next_attempt
        item.kind = kind
        item.processing_started_at = None
        document.put(ItemStatus.PENDING, item)

        logger.info(
            "Request rescheduled",
            extra={
                "item_id": item.id,
                "kind": kind.value,
                "result": item.last_result,
                "attempt": attempt,
                "next_attempt": next_attempt.isoformat(),
                "reference": item.reference,
            },
        )
        return next_attempt

    def _fail(self, document: QueueDocument, item: QueueItem, now: datetime, reason: str) -> TransitionResult:
        item.failed_at = now
        item.failure_reason = reason
        document.put(ItemStatus.FAILED, item)
        document.counters.failed_calls += 1

        logger.info(
            "Request failed",
            extra={
                "item_id": item.id,
                "result": item.last_result,
                "failure_reason": reason,
                "reference": item.reference,
            },
        )
        return TransitionResult(status=TransitionStatus.FAILED, item=item)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return _as_utc(self._clock())

    @staticmethod
    def _find(document: QueueDocument, status: ItemStatus, item_id: str) -> QueueItem | None:
        for item in document.partition(status):
            if item.id == item_id:
                return item
        return None

    @contextmanager
    def _transaction(self) -> Iterator[QueueDocument]:
        with self._lock.hold() as token:
            document = self._load()
            yield document
            self._lock.ensure_held(token)
            self._save(document)

    @contextmanager
    def _snapshot(self) -> Iterator[QueueDocument]:
        with self._lock.hold():
            yield self._load()

    def _load(self) -> QueueDocument:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return QueueDocument()
        except OSError as exc:
            raise StoreIOError(f"Could not read queue file {self._path}: {exc}") from exc

        try:
            return QueueDocument.model_validate_json(raw)
        except PydanticValidationError as exc:
            raise StoreIOError(f"Queue file {self._path} is corrupted: {exc}") from exc

    def _save(self, document: QueueDocument) -> None:
        tmp = self._path.with_name(f"{self._path.name}.{os.getpid()}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(document.model_dump_json(indent=2), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as exc:
            raise StoreIOError(f"Could not write queue file {self._path}: {exc}") from exc
        finally:
            if tmp.exists():
                try:
                    tmp.unlink()
                except OSError:
                    pass
