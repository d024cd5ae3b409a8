"""Per-resource locks acquired in one global order."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, FrozenSet, Iterator, Optional, Tuple

from models.errors import LockTimeoutError, TransactionError
from models.status import ResourceKind

logger = logging.getLogger(__name__)

LockKey = Tuple[str, str]


def resource_key(kind: ResourceKind, resource_id: str) -> LockKey:
    return (kind.value, str(resource_id))


class LockScope:
    """
    Proof that a set of resource locks is held.

    Repository methods that read or write scheduling state take a scope and
    refuse to run unless it covers the resource they touch. A scope stops
    being valid once its locks are released.
    """

    def __init__(self, keys: FrozenSet[LockKey]):
        self.keys = keys
        self.open = True

    def holds(self, kind: ResourceKind, resource_id: str) -> bool:
        return self.open and resource_key(kind, resource_id) in self.keys

    def require(self, kind: ResourceKind, resource_id: str) -> None:
        if not self.open:
            raise TransactionError("Lock scope has already been released")
        if resource_key(kind, resource_id) not in self.keys:
            raise TransactionError(
                f"Lock scope does not hold {kind.value} '{resource_id}'"
            )

    def __repr__(self) -> str:
        state = "open" if self.open else "closed"
        return f"<LockScope {sorted(self.keys)} {state}>"


class LockManager:
    """
    Hands out one lock per (kind, id) key.

    ``hold`` acquires every requested key in sorted order, so two callers
    needing the same vehicle and driver always queue in the same sequence
    and cannot deadlock.
    """

    def __init__(self, timeout: Optional[float] = 5.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[LockKey, threading.Lock] = {}

    def _lock_for(self, key: LockKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, *keys: LockKey) -> Iterator[LockScope]:
        ordered = sorted(set(keys))
        acquired = []
        scope = LockScope(frozenset(ordered))
        try:
            for key in ordered:
                lock = self._lock_for(key)
                timeout = -1 if self.timeout is None else self.timeout
                if not lock.acquire(timeout=timeout):
                    logger.warning("Lock timeout on %s '%s' after %ss", key[0], key[1], self.timeout)
                    raise LockTimeoutError(key, self.timeout)
                acquired.append(lock)
            yield scope
        finally:
            scope.open = False
            for lock in reversed(acquired):
                lock.release()
