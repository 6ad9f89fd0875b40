"""
Keyed Async Locks

Serialises critical sections that touch the same job (or bid) inside one
process. Each entry lives only while someone holds or waits for it, so the
registry does not grow with the number of jobs ever seen.

Across processes the row lock taken with ``SELECT ... FOR UPDATE`` provides the
same guarantee.
"""
import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import InternalInconsistency
from src.core.logging import get_logger, log_context

logger = get_logger(__name__)


class KeyedLocks:
    """Registry of ``asyncio.Lock`` objects addressed by string key."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                with log_context(lock=key):
                    yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def job(self, job_id: Any):
        """Exclusive section for every state change of one job."""
        return self.hold(f"job:{job_id}")

    def bid(self, bid_id: Any):
        """Lighter section for changes that only touch a single bid."""
        return self.hold(f"bid:{bid_id}")

    def __len__(self) -> int:
        return len(self._locks)


@asynccontextmanager
async def critical_section(db: AsyncSession, lock: AbstractAsyncContextManager) -> AsyncIterator[None]:
    """
    Hold ``lock`` around a block of writes on ``db``.

    Any exception rolls the session back before the lock is released. The
    block is expected to commit itself on success.
    """
    async with lock:
        try:
            yield
        except InternalInconsistency as exc:
            await db.rollback()
            logger.error("Invariant violated, transaction rolled back", reason=exc.reason, **exc.context)
            raise
        except Exception:
            await db.rollback()
            raise
