from __future__ import annotations

import asyncio
from typing import Optional

from relying_party.errors import AppError
from relying_party.logging_config import logger

from .manager import SessionManager


class SessionSweeper:
    """
    Background task that periodically purges expired sessions.

    It only reclaims storage; session validity never depends on it having run.
    """

    def __init__(self, manager: SessionManager, *, interval_seconds: float) -> None:
        self._manager = manager
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._run(), name="session-sweeper")
        logger.info("Session sweeper started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def sweep_once(self) -> int:
        try:
            purged = await self._manager.purge_expired()
        except AppError as exc:
            logger.warning("Session sweep failed: %s", exc.message)
            return 0
        if purged:
            logger.info("Session sweep removed %d expired entries", purged)
        return purged

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.sweep_once()


__all__ = ["SessionSweeper"]
