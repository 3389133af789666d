"""
Concurrency management: per-class exclusive locks and write versions.
"""

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional

from ..core.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0


@dataclass
class LockInfo:
    """Information about a held lock."""
    lock_id: str
    resource_id: str
    holder_id: str
    acquired_at: float


def current_holder() -> str:
    """Holder identity for locks taken on behalf of the calling thread."""
    return f"thread_{threading.get_ident()}"


class ConcurrencyManager:
    """Grants exclusive locks per resource and tracks write versions.

    Acquisition blocks until no other holder owns the resource or the timeout
    expires. A holder that already owns a lock on a resource may take further
    locks on it, so nested writes from one thread never deadlock.
    """

    def __init__(self, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self._lock_timeout = lock_timeout
        self._lock_holders: Dict[str, LockInfo] = {}
        self._version_tracker: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._released = threading.Condition(self._lock)

    def acquire_lock(self, resource_id: str, holder_id: str, timeout: Optional[float] = None) -> str:
        """Acquire the lock on a resource, waiting up to ``timeout`` seconds."""
        timeout = self._lock_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        with self._released:
            while not self._can_acquire_lock(resource_id, holder_id):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ConcurrencyError(
                        f"Timed out acquiring lock on {resource_id}",
                        error_code="lock_timeout",
                        details={'resource_id': resource_id, 'timeout': timeout}
                    )
                self._released.wait(remaining)

            lock_id = str(uuid.uuid4())
            self._lock_holders[lock_id] = LockInfo(
                lock_id=lock_id,
                resource_id=resource_id,
                holder_id=holder_id,
                acquired_at=time.time()
            )
            logger.debug("Lock %s on %s granted to %s", lock_id, resource_id, holder_id)
            return lock_id

    def release_lock(self, lock_id: str) -> bool:
        """Release a lock."""
        with self._released:
            if self._lock_holders.pop(lock_id, None) is None:
                return False
            self._released.notify_all()
            return True

    def _can_acquire_lock(self, resource_id: str, holder_id: str) -> bool:
        return all(info.holder_id == holder_id for info in self._lock_holders.values()
                   if info.resource_id == resource_id)

    @contextmanager
    def lock(self, resource_id: str, holder_id: Optional[str] = None, timeout: Optional[float] = None):
        """Context manager for acquiring and releasing locks."""
        lock_id = self.acquire_lock(resource_id, holder_id or current_holder(), timeout)
        try:
            yield lock_id
        finally:
            self.release_lock(lock_id)

    def class_write_lock(self, class_id: str, timeout: Optional[float] = None):
        """Exclusive lock serializing every evaluation write to one class."""
        return self.lock(f"class_{class_id}", timeout=timeout)

    def get_version(self, resource_id: str) -> int:
        """Get current version of a resource."""
        with self._lock:
            return self._version_tracker.get(resource_id, 0)

    def increment_version(self, resource_id: str) -> int:
        """Increment version of a resource."""
        with self._lock:
            new_version = self._version_tracker.get(resource_id, 0) + 1
            self._version_tracker[resource_id] = new_version
            return new_version

    def forget(self, resource_id: str) -> None:
        """Drop version tracking for a deleted resource."""
        with self._lock:
            self._version_tracker.pop(resource_id, None)
