"""Background sweep of expired pending authorization attempts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from social_rewards.application.errors import StorageUnavailableError
from social_rewards.application.ports.pending_auth_store_port import PendingAuthStorePort

SleepCallable = Callable[[float], Awaitable[None]]
NowCallable = Callable[[], datetime]
logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class PendingAuthSweeper:
    """Periodic purge loop for the pending-auth store."""

    def __init__(
        self,
        *,
        store: PendingAuthStorePort,
        interval_seconds: float = 60.0,
        sleep: SleepCallable = asyncio.sleep,
        now: NowCallable = _utc_now,
    ) -> None:
        self._store = store
        self._interval_seconds = interval_seconds
        self._sleep = sleep
        self._now = now

    async def run_once(self) -> int:
        """Purge expired attempts once and return the number removed."""

        try:
            removed = await self._store.purge_expired(now=self._now())
        except StorageUnavailableError:
            logger.warning("pending_auth_sweep_failed")
            return 0
        if removed:
            logger.info("pending_auth_swept count=%s", removed)
        return removed

    async def run_until_stopped(self, stop_event: asyncio.Event) -> None:
        """Sweep, then sleep, until stop_event is set."""

        while not stop_event.is_set():
            await self.run_once()
            await self._sleep(self._interval_seconds)
