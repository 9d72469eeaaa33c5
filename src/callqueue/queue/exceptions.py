"""
Queue store errors.

None of these are retried by the store itself: retrying is the caller's call.
"""

from pathlib import Path

from callqueue.shared.exceptions import AppError, NotFoundError


class QueueError(AppError):
    """Base exception for queue store errors."""


class LockTimeoutError(QueueError):
    """The queue lock could not be acquired within the wait budget."""

    def __init__(self, lock_path: Path, timeout: float) -> None:
        super().__init__(
            f"Could not acquire queue lock {lock_path} within {timeout:.1f}s",
            "LOCK_TIMEOUT",
        )
        self.lock_path = lock_path
        self.timeout = timeout


class LockLostError(QueueError):
    """The lock marker no longer carries our token: another process reclaimed it."""

    def __init__(self, lock_path: Path) -> None:
        super().__init__(
            f"Queue lock {lock_path} was reclaimed by another holder; changes discarded",
            "LOCK_LOST",
        )
        self.lock_path = lock_path


class ItemNotFoundError(QueueError, NotFoundError):
    """Item id absent from the partition the operation expects it in."""

    def __init__(self, item_id: str, partition: str) -> None:
        AppError.__init__(
            self,
            f"Item {item_id} not found in {partition}",
            "ITEM_NOT_FOUND",
        )
        self.item_id = item_id
        self.partition = partition


class StoreIOError(QueueError):
    """Reading, parsing or writing the queue document failed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "STORE_IO_ERROR")
