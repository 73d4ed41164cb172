"""Cooperative pause/resume for batch admissions.

The scheduler keeps a reference to the controller and asks `is_paused` at
every admission decision, so a toggle made while tasks are in flight takes
effect at the very next decision. Pausing never touches admitted work.
"""
import asyncio
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class PauseController:
    """Shared, mutable pause flag with an awaitable resume signal."""

    def __init__(self, paused: bool = False) -> None:
        self._resumed = asyncio.Event()
        if not paused:
            self._resumed.set()

    @property
    def is_paused(self) -> bool:
        return not self._resumed.is_set()

    def set_paused(self, paused: bool) -> None:
        if paused == self.is_paused:
            return
        if paused:
            self._resumed.clear()
        else:
            self._resumed.set()
        logger.info("batch_pause_toggled", paused=paused)

    def pause(self) -> None:
        self.set_paused(True)

    def resume(self) -> None:
        self.set_paused(False)

    def toggle(self) -> bool:
        """Flip the flag; returns the new paused state."""
        self.set_paused(not self.is_paused)
        return self.is_paused

    async def wait_until_resumed(self, timeout: Optional[float] = None) -> bool:
        """Wait for a resume, at most `timeout` seconds.

        Returns:
            True if running (not paused) when the wait ends
        """
        if not self.is_paused:
            return True
        try:
            await asyncio.wait_for(self._resumed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True
