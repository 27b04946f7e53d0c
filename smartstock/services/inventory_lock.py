"""Per-product advisory locks for ledger mutations.

The lock is a set of busy product ids. Claiming a key is a check-and-add with
no ``await`` in between, so it is atomic under asyncio's cooperative
scheduling. It only serialises work inside this process; it does not
coordinate several workers sharing one database.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from smartstock.config import settings
from smartstock.errors import LockAcquisitionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InventoryLockManager:
    def __init__(
        self,
        max_retries: int = settings.LOCK_MAX_RETRIES,
        retry_delay: float = settings.LOCK_RETRY_DELAY_SECONDS,
    ):
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._busy: set[str] = set()

    def is_locked(self, product_id: str) -> bool:
        return str(product_id) in self._busy

    def try_acquire(self, product_id: str) -> bool:
        key = str(product_id)
        if key in self._busy:
            return False
        self._busy.add(key)
        return True

    def release(self, product_id: str) -> None:
        self._busy.discard(str(product_id))

    async def acquire(
        self, product_id: str, max_retries: int | None = None, retry_delay: float | None = None
    ) -> None:
        attempts = self.max_retries if max_retries is None else max_retries
        delay = self.retry_delay if retry_delay is None else retry_delay

        for attempt in range(1, attempts + 1):
            if self.try_acquire(product_id):
                return
            if attempt < attempts:
                await asyncio.sleep(delay)

        logger.warning("Inventory lock for product %s still busy after %d attempts", product_id, attempts)
        raise LockAcquisitionError(str(product_id), attempts)

    @asynccontextmanager
    async def hold(self, product_id: str, max_retries: int | None = None, retry_delay: float | None = None):
        await self.acquire(product_id, max_retries=max_retries, retry_delay=retry_delay)
        try:
            yield
        finally:
            self.release(product_id)

    async def run(
        self,
        product_id: str,
        operation: Callable[[], Awaitable[T]],
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> T:
        async with self.hold(product_id, max_retries=max_retries, retry_delay=retry_delay):
            return await operation()


inventory_locks = InventoryLockManager()


async def with_inventory_lock(
    product_id: str,
    operation: Callable[[], Awaitable[T]],
    max_retries: int | None = None,
    retry_delay: float | None = None,
) -> T:
    """Run ``operation`` while holding the process-wide lock for ``product_id``."""
    return await inventory_locks.run(product_id, operation, max_retries=max_retries, retry_delay=retry_delay)
