"""
Per-card mutation locks.

Mutations of one card's task tree run one at a time so the invariant
checks and the writes they guard see the same snapshot. Different cards
never wait on each other. A card's lock is dropped from the registry as
soon as nothing holds or waits on it.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional
from uuid import UUID

from cardtasks.exceptions import InternalError
from cardtasks.logging_config import get_logger

logger = get_logger(__name__)


class CardLocks:
    """Registry of asyncio locks keyed by card ID."""

    def __init__(self, timeout: Optional[float] = None) -> None:
        """
        Args:
            timeout: Seconds to wait for a card's lock; None waits forever
        """
        self.timeout = timeout
        self._locks: Dict[UUID, asyncio.Lock] = {}
        # holders plus waiters per card
        self._users: Dict[UUID, int] = {}

    async def _acquire(self, lock: asyncio.Lock, card_id: UUID) -> None:
        """
        Acquire lock, giving up after the configured timeout.

        The acquire runs as its own task behind a shield, so a timeout or
        cancellation that races a successful acquire still releases the lock.

        Raises:
            InternalError: If the lock is not acquired within the timeout
        """
        if self.timeout is None:
            await lock.acquire()
            return

        acquiring = asyncio.ensure_future(lock.acquire())
        try:
            await asyncio.wait_for(asyncio.shield(acquiring), self.timeout)
        except BaseException as e:
            if acquiring.done() and not acquiring.cancelled() and acquiring.exception() is None:
                lock.release()
            else:
                acquiring.cancel()
            if isinstance(e, asyncio.TimeoutError):
                logger.error(f"Timed out after {self.timeout}s waiting for card {card_id}")
                raise InternalError(f"Timed out waiting for card {card_id}") from e
            raise

    @asynccontextmanager
    async def hold(self, card_id: UUID) -> AsyncGenerator[None, None]:
        """
        Hold the lock for card_id for the duration of the block.

        Raises:
            InternalError: If the lock is not acquired within the timeout
        """
        lock = self._locks.setdefault(card_id, asyncio.Lock())
        self._users[card_id] = self._users.get(card_id, 0) + 1
        try:
            await self._acquire(lock, card_id)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[card_id] -= 1
            if not self._users[card_id]:
                del self._users[card_id]
                del self._locks[card_id]
