"""
Deferred callbacks to customers whose calls dropped.

A callback is an asyncio task that sleeps for the configured delay and then
runs an action. Tasks are held in a ``KeyedStore`` keyed by normalized phone
number, so there is never more than one pending callback per number: arming
again replaces the earlier task, and a returning caller cancels it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from voice_gateway.config.constants import CALLBACK_DELAY_SECONDS, LOGGER_NAME
from voice_gateway.models.records import normalize_phone
from voice_gateway.models.store import InMemoryKeyedStore, KeyedStore

logger = logging.getLogger(LOGGER_NAME)

CallbackAction = Callable[[str], Awaitable[None]]


class CallbackScheduler:
    def __init__(self, delay_seconds: float = CALLBACK_DELAY_SECONDS,
                 store: Optional[KeyedStore[asyncio.Task]] = None):
        self.delay_seconds = delay_seconds
        self.store = store if store is not None else InMemoryKeyedStore()

    async def arm(self, phone_number: str, action: CallbackAction) -> bool:
        """
        Schedule ``action(phone_number)`` after the delay, replacing any pending callback.

        Returns:
            bool: False if the number is empty
        """
        key = normalize_phone(phone_number)
        if not key:
            logger.warning("Cannot arm callback without a phone number")
            return False

        async with self.store.lock(key):
            previous = await self.store.get(key)
            if previous is not None and not previous.done():
                previous.cancel()
                logger.info(f"Replaced pending callback for {phone_number}")
            task = asyncio.create_task(self._run(key, phone_number, action))
            await self.store.set(key, task)

        logger.info(f"Callback to {phone_number} armed for {self.delay_seconds}s")
        return True

    async def _run(self, key: str, phone_number: str, action: CallbackAction) -> None:
        await asyncio.sleep(self.delay_seconds)
        try:
            await action(phone_number)
        except Exception as e:
            logger.error(f"Callback to {phone_number} failed: {e}", exc_info=True)
        finally:
            async with self.store.lock(key):
                # A newer callback may have been armed while this one ran
                if await self.store.get(key) is asyncio.current_task():
                    await self.store.delete(key)

    async def cancel(self, phone_number: Optional[str]) -> bool:
        """
        Cancel the pending callback for a number.

        Returns:
            bool: True if a callback was pending
        """
        key = normalize_phone(phone_number)
        if not key:
            return False
        async with self.store.lock(key):
            task = await self.store.delete(key)
        if task is None:
            return False
        if not task.done():
            task.cancel()
        logger.info(f"Pending callback to {phone_number} cancelled")
        return True

    async def is_pending(self, phone_number: str) -> bool:
        task = await self.store.get(normalize_phone(phone_number))
        return task is not None and not task.done()

    async def pending(self) -> List[str]:
        """Normalized numbers that have a callback waiting."""
        return [key for key in await self.store.keys() if await self.is_pending(key)]

    async def shutdown(self) -> None:
        """Cancel every pending callback, e.g. on application shutdown."""
        for key in await self.store.keys():
            task = await self.store.delete(key)
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
