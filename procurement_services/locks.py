"""
Per-purchase-request locks held while a basket finalizes.

Two baskets finalizing twins of the same purchase request must not both
pass the twin check.  The synchronizer holds the lock of every request
referenced by the basket from the twin check until the basket status is
persisted.  Locks are acquired in sorted order, so two finalizations never
deadlock.

Scope: one process.  Several processes sharing a database need the same
guard in storage (row locks or compare-and-swap on the link rows).
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from uuid import UUID

from procurement_kernel.logging_config import get_logger

logger = get_logger("services.locks")


class RequestLockRegistry:
    """In-process registry of one lock per purchase request id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[UUID, threading.Lock] = {}

    def _lock_for(self, request_id: UUID) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(request_id)
            if lock is None:
                lock = self._locks[request_id] = threading.Lock()
            return lock

    def is_held(self, request_id: UUID) -> bool:
        with self._guard:
            lock = self._locks.get(request_id)
        return lock is not None and lock.locked()

    @contextmanager
    def hold(self, request_ids: Iterable[UUID]) -> Iterator[tuple[UUID, ...]]:
        """Hold the locks of ``request_ids`` for the duration of the block."""
        ordered = tuple(sorted(set(request_ids), key=str))
        acquired: list[threading.Lock] = []
        try:
            for request_id in ordered:
                lock = self._lock_for(request_id)
                lock.acquire()
                acquired.append(lock)
            logger.debug("request_locks_acquired", extra={"lock_count": len(ordered)})
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()


_process_registry = RequestLockRegistry()


def process_lock_registry() -> RequestLockRegistry:
    """The registry shared by every synchronizer of this process."""
    return _process_registry
