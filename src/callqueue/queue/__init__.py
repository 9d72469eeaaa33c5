"""
Durable call queue.

Four partitions (pending, processing, completed, failed) persisted in one
JSON document, guarded by an advisory lock file.
"""

from callqueue.queue.exceptions import (
    ItemNotFoundError,
    LockLostError,
    LockTimeoutError,
    QueueError,
    StoreIOError,
)
from callqueue.queue.lock import QueueLock
from callqueue.queue.models import (
    CallOutcome,
    CallResult,
    CleanupResult,
    EnqueueResult,
    ItemKind,
    ItemStatus,
    QueueItem,
    QueueStats,
    TransitionResult,
    TransitionStatus,
)
from callqueue.queue.store import QueueStore

__all__ = [
    "CallOutcome",
    "CallResult",
    "CleanupResult",
    "EnqueueResult",
    "ItemKind",
    "ItemNotFoundError",
    "ItemStatus",
    "LockLostError",
    "LockTimeoutError",
    "QueueError",
    "QueueItem",
    "QueueLock",
    "QueueStats",
    "QueueStore",
    "StoreIOError",
    "TransitionResult",
    "TransitionStatus",
]
