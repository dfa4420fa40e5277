"""
In-process keyed locks for reconciliation
Serializes identify requests that touch the same email, phone number or
chain. Keys are always acquired in sorted order so two requests can never
wait on each other in a cycle.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Iterable, Optional

from errors import ConflictError

logger = logging.getLogger(__name__)


def fingerprint_keys(email: Optional[str], phone: Optional[str]):
    """Lock keys for an observation's normalized email and phone"""
    keys = []
    if email:
        keys.append(f"email:{email}")
    if phone:
        keys.append(f"phone:{phone}")
    return keys


def chain_keys(primary_ids: Iterable[int]):
    """Lock keys for a set of chain primaries"""
    return [f"contact:{primary_id}" for primary_id in sorted(set(primary_ids))]


class KeyedLocks:
    """
    Registry of asyncio locks created on demand and dropped once nobody
    holds or waits for them
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self):
        return len(self._locks)

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: str):
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, keys: Iterable[str], timeout: Optional[float] = None):
        """
        Hold every lock in keys for the duration of the block

        Waits up to timeout seconds in total across all keys; raises
        ConflictError when they are not all acquired by then.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        held = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                try:
                    if lock.locked():
                        remaining = None if deadline is None else max(deadline - loop.time(), 0)
                        await asyncio.wait_for(lock.acquire(), remaining)
                    else:
                        await lock.acquire()
                except asyncio.TimeoutError:
                    self._checkin(key)
                    logger.warning(f"Timed out after {timeout}s waiting for lock {key}")
                    raise ConflictError(f"Another request is reconciling {key}")
                except BaseException:
                    self._checkin(key)
                    raise
                held.append(key)
            yield
        finally:
            for key in reversed(held):
                self._locks[key].release()
                self._checkin(key)
