"""Per-chain mutual exclusion.

All mutations of one delegation chain are serialized on a key derived from
its root assignment id. With Redis available the lock is a Redis lock and
therefore holds across worker processes; otherwise a process-local lock
keyed the same way is used. Either way the chain engine still re-checks the
root's ``chain_version`` inside the database transaction.
"""

from __future__ import annotations

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator

from redis.exceptions import LockError, RedisError

from app.core.config import settings
from app.core.errors import ConcurrentModification
from app.core.redis import get_redis, redis_key

logger = logging.getLogger("form_portal.locks")

_local_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_registry_guard = threading.Lock()


def chain_key(root_assignment_id: int) -> str:
    return f"chain:{root_assignment_id}"


def root_key(template_id: int, actor_id: int) -> str:
    return f"root:{template_id}:{actor_id}"


def _local_lock(key: str) -> threading.Lock:
    with _registry_guard:
        lock = _local_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _local_locks[key] = lock
        return lock


@contextmanager
def chain_lock(key: str, timeout: float | None = None) -> Iterator[None]:
    """Hold the exclusive lock for ``key`` for the duration of the block.

    Raises ConcurrentModification if the lock cannot be acquired in time.
    """
    wait = float(timeout if timeout is not None else settings.CHAIN_LOCK_TIMEOUT_SECONDS)

    r = get_redis()
    if r is not None:
        lock = r.lock(redis_key("lock", key), timeout=max(wait * 3, 30), blocking_timeout=wait)
        try:
            acquired = lock.acquire()
        except RedisError as exc:
            logger.warning("Redis lock failed for %s: %s", key, exc)
            raise ConcurrentModification("Could not lock this form for update. Try again.") from exc
        if not acquired:
            logger.warning("Timed out waiting for lock %s", key)
            raise ConcurrentModification()
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # expired while held; the version check inside the transaction still applies
                logger.warning("Lock %s expired before release", key)
        return

    lock = _local_lock(key)
    if not lock.acquire(timeout=wait):
        logger.warning("Timed out waiting for lock %s", key)
        raise ConcurrentModification()
    try:
        yield
    finally:
        lock.release()
