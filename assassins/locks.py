"""Per-group mutual exclusion for ring mutations."""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Tuple

from .errors import RingBusy

logger = logging.getLogger(__name__)

# Entries disappear once no coroutine holds or waits on the lock
_group_locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()


def get_group_lock(db_path: str, group_id: str) -> asyncio.Lock:
    """Get the lock serializing mutations of one group's ring."""
    key = (db_path, group_id)
    lock = _group_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _group_locks[key] = lock
    return lock


@asynccontextmanager
async def group_lock(db_path: str, group_id: str, timeout: float):
    """Hold the group's lock for the body, failing with RingBusy after timeout seconds."""
    lock = get_group_lock(db_path, group_id)
    try:
        await asyncio.wait_for(lock.acquire(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Timed out waiting {timeout}s for ring lock of group {group_id}")
        raise RingBusy()
    try:
        yield
    finally:
        lock.release()
