"""
Advisory lock file serializing every read-modify-write of the queue document.

The marker is created with O_CREAT | O_EXCL, so only one process can hold it.
A marker older than ``stale_after`` seconds is presumed abandoned (its holder
died) and is removed before retrying. Each acquisition writes a random token
into the marker; holders call ``ensure_held`` before persisting so that a
holder whose lock was reclaimed refuses to write instead of clobbering the
new holder's changes.
"""

from __future__ import annotations

import json
import os
import socket
import time
import uuid
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Any, Callable, Iterator

from callqueue.queue.exceptions import LockLostError, LockTimeoutError, StoreIOError
from callqueue.shared.logging import get_logger

logger = get_logger(__name__)


class QueueLock:
    """Cross-process mutual exclusion based on a marker file."""

    def __init__(
        self,
        path: Path | str,
        *,
        timeout: float = 10.0,
        stale_after: float = 30.0,
        poll_interval: float = 0.1,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the lock.

        Args:
            path: Marker file location.
            timeout: Maximum seconds spent in ``acquire``.
            stale_after: Marker age (seconds, by mtime) after which it is reclaimed.
            poll_interval: Sleep between two attempts while the marker is held.
            clock: Wall clock used to age the marker.
            sleep: Sleep function (injectable for tests).
        """
        self._path = Path(path)
        self._timeout = timeout
        self._stale_after = stale_after
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._holder = f"{socket.gethostname()}:{os.getpid()}"

    @property
    def path(self) -> Path:
        return self._path

    def acquire(self) -> str:
        """Block until the lock is held and return the fencing token.

        Raises:
            LockTimeoutError: Not acquired within ``timeout``.
            StoreIOError: The marker could not be created for another reason.
        """
        token = uuid.uuid4().hex
        deadline = time.monotonic() + self._timeout

        while True:
            if self._try_create(token):
                return token

            self._reclaim_if_stale()

            if time.monotonic() >= deadline:
                logger.error(
                    "Queue lock acquisition timed out",
                    extra={"lock_path": str(self._path), "timeout_seconds": self._timeout},
                )
                raise LockTimeoutError(self._path, self._timeout)
            self._sleep(self._poll_interval)

    def release(self, token: str) -> None:
        """Remove the marker if it still carries ``token``."""
        marker = self._read_marker()
        if marker is None:
            return
        if marker.get("token") != token:
            logger.warning(
                "Queue lock held by another process at release; leaving it",
                extra={"lock_path": str(self._path), "holder": marker.get("holder")},
            )
            return
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise StoreIOError(f"Could not release queue lock {self._path}: {exc}") from exc

    def is_held(self, token: str) -> bool:
        marker = self._read_marker()
        return marker is not None and marker.get("token") == token

    def ensure_held(self, token: str) -> None:
        """Raise ``LockLostError`` if the marker no longer carries ``token``."""
        if not self.is_held(token):
            logger.error("Queue lock lost before write", extra={"lock_path": str(self._path)})
            raise LockLostError(self._path)

    @contextmanager
    def hold(self) -> Iterator[str]:
        """Hold the lock for the duration of the block, releasing it on every exit path."""
        token = self.acquire()
        try:
            yield token
        finally:
            self.release(token)

    def _try_create(self, token: str) -> bool:
        marker = {
            "holder": self._holder,
            "token": token,
            "acquired_at": self._clock(),
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as exc:
            raise StoreIOError(f"Could not create queue lock {self._path}: {exc}") from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(marker, fh)
        except OSError as exc:
            # Do not leave an empty marker blocking everyone until it goes stale.
            with suppress(OSError):
                self._path.unlink()
            raise StoreIOError(f"Could not write queue lock {self._path}: {exc}") from exc
        return True

    def _reclaim_if_stale(self) -> None:
        try:
            mtime = self._path.stat().st_mtime
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StoreIOError(f"Could not inspect queue lock {self._path}: {exc}") from exc
        age = self._clock() - mtime
        if age <= self._stale_after:
            return

        logger.warning(
            "Stale queue lock detected, removing",
            extra={"lock_path": str(self._path), "age_seconds": round(age, 1)},
        )
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise StoreIOError(f"Could not remove stale queue lock {self._path}: {exc}") from exc

    def _read_marker(self) -> dict[str, Any] | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreIOError(f"Could not read queue lock {self._path}: {exc}") from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            # Marker created but not yet written by its holder.
            return {}
        return data if isinstance(data, dict) else {}
