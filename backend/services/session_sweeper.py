"""
Background sweep of expired sessions.

The sweeper owns a single ``asyncio.Task``: it sweeps once as soon as it
starts and then once per interval until stopped. A failed sweep is logged
and the schedule carries on.
"""

import asyncio
import contextlib
import logging
from typing import Optional

from config import settings
from auth.session_store import SessionStore
from utils.logging_utils import LogTimer

logger = logging.getLogger(__name__)


class SessionSweeper:
    """Recurring task that deletes expired sessions from the store."""

    def __init__(self, store: SessionStore, interval_seconds: Optional[float] = None):
        self.store = store
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else settings.SESSION_SWEEP_INTERVAL_SECONDS
        )
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop."""
        if self.running:
            logger.warning("Session sweeper already running")
            return
        self._task = asyncio.create_task(self._run_loop(), name="session-sweeper")
        logger.info(
            f"Session cleanup configured (runs every {self.interval_seconds:g}s)"
        )

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Session sweeper stopped")

    async def run_once(self) -> int:
        """Run one sweep. Returns the number of sessions removed, 0 on failure."""
        try:
            with LogTimer(logger, "Expired session sweep", level=logging.DEBUG) as timer:
                removed = await self.store.sweep()
                timer.set_record_count(removed)
            return removed
        except Exception:
            logger.exception("Session sweep failed")
            return 0

    async def _run_loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)
