"""
Domain models for the persisted call queue.

The whole queue is one JSON document: four partitions and a counters record.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ItemKind(str, Enum):
    """Why the current attempt of an item exists."""

    INITIAL = "initial"
    RETRY = "retry"
    CALLBACK = "callback"


class ItemStatus(str, Enum):
    """Partition currently holding an item."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CallResult(str, Enum):
    """Outcome labels understood by the queue state machine.

    Any other label is accepted and handled as a technical failure.
    """

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CALLBACK_REQUESTED = "callback_requested"
    NO_ANSWER = "no_answer"
    VOICEMAIL = "voicemail"
    FAILED = "failed"


TERMINAL_RESULTS = frozenset({CallResult.ACCEPTED.value, CallResult.REJECTED.value})


class TransitionStatus(str, Enum):
    """Result of completing an attempt."""

    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"
    FAILED = "failed"


class AttemptCounters(BaseModel):
    total: int = 0
    technical_failures: int = 0
    callback_requests: int = 0


class AttemptRecord(BaseModel):
    """One entry of an item's append-only history."""

    timestamp: datetime
    external_call_id: str | None = None
    call_status: str | None = None
    result: str
    reason: str | None = None


class QueueItem(BaseModel):
    """A refund-request call waiting, running or finished."""

    id: str
    created_at: datetime
    scheduled_for: datetime
    kind: ItemKind = ItemKind.INITIAL
    status: ItemStatus = ItemStatus.PENDING
    attempts: AttemptCounters = Field(default_factory=AttemptCounters)
    last_result: str | None = None
    history: list[AttemptRecord] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)

    processing_started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None

    # In-flight call, only set while the item sits in the processing partition.
    external_call_id: str | None = None
    call_started_at: datetime | None = None

    @property
    def reference(self) -> str | None:
        """Human-readable reference extracted from the payload, if any."""
        reference = self.payload.get("reference")
        if reference is None:
            order = self.payload.get("order")
            if isinstance(order, dict):
                reference = order.get("reference")
        return str(reference) if reference is not None else None

    @property
    def terminated_at(self) -> datetime:
        return self.completed_at or self.failed_at or self.created_at


class QueueCounters(BaseModel):
    total_requests: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    callbacks_requested: int = 0


class QueueDocument(BaseModel):
    """The persisted aggregate."""

    pending: list[QueueItem] = Field(default_factory=list)
    processing: list[QueueItem] = Field(default_factory=list)
    completed: list[QueueItem] = Field(default_factory=list)
    failed: list[QueueItem] = Field(default_factory=list)
    counters: QueueCounters = Field(default_factory=QueueCounters)

    def partition(self, status: ItemStatus) -> list[QueueItem]:
        return getattr(self, status.value)

    def take(self, status: ItemStatus, item_id: str) -> QueueItem | None:
        """Remove and return the item ``item_id`` from a partition."""
        items = self.partition(status)
        for index, item in enumerate(items):
            if item.id == item_id:
                return items.pop(index)
        return None

    def put(self, status: ItemStatus, item: QueueItem) -> None:
        item.status = status
        self.partition(status).append(item)


class CallOutcome(BaseModel):
    """Result of one call attempt, fed into ``QueueStore.complete_attempt``."""

    external_call_id: str | None = Field(
        default=None,
        description="Voice-agent conversation identifier",
    )
    call_status: str | None = Field(
        default=None,
        description="Telephony-level status (answered, no_answer, voicemail, failed)",
    )
    result: str = Field(
        ...,
        description="Outcome label (see CallResult); unknown labels are technical failures",
    )
    reason: str | None = Field(
        default=None,
        description="Optional free-text reason (e.g. refusal motive)",
    )


class EnqueueResult(BaseModel):
    id: str
    scheduled_for: datetime


class TransitionResult(BaseModel):
    status: TransitionStatus
    item: QueueItem
    next_attempt: datetime | None = None


class UpcomingItem(BaseModel):
    id: str
    reference: str | None = None
    scheduled_for: datetime
    kind: ItemKind
    total_attempts: int


class QueueStats(BaseModel):
    pending: int
    processing: int
    completed: int
    failed: int
    counters: QueueCounters
    next_items: list[UpcomingItem] = Field(default_factory=list)


class CleanupResult(BaseModel):
    removed_completed: int = 0
    removed_failed: int = 0
