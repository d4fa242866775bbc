"""Per-key asyncio coordination primitives.

- InFlightGuard: refuses a second mutation for a key while one is outstanding.
- KeyedLocks: one asyncio.Lock per key, created on demand.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Set

from core.errors import DuplicateSubmissionError


class InFlightGuard:
    """Duplicate-submission guard.

    Usage:
        guard = InFlightGuard()
        async with guard.hold(f"invoice:{invoice_id}"):
            await backend.sign_invoice(...)
    """

    def __init__(self):
        self._active: Set[str] = set()

    def is_active(self, key: str) -> bool:
        return key in self._active

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        if key in self._active:
            raise DuplicateSubmissionError(key)
        self._active.add(key)
        try:
            yield
        finally:
            self._active.discard(key)


class KeyedLocks:
    """Lazily created asyncio locks keyed by string."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
