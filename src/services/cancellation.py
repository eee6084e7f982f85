"""Cooperative pause/resume/cancel signals for batch runs."""

import asyncio


class CancellationToken:
    """Pause and cancel flags shared between a batch driver and its callers.

    Callers flip the flags; the driver checks them between items. Nothing
    in flight is interrupted.
    """

    def __init__(self):
        self._cancelled = asyncio.Event()
        self._resumed = asyncio.Event()
        self._resumed.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def is_paused(self) -> bool:
        return not self._resumed.is_set()

    def pause(self) -> None:
        if not self.is_cancelled:
            self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    def cancel(self) -> None:
        self._cancelled.set()
        # Wake anything parked on a pause
        self._resumed.set()

    async def wait_if_paused(self, poll_interval: float = 0.2) -> bool:
        """Block while paused, waking at least every poll_interval seconds.

        Returns:
            True if the run may continue, False if it was cancelled
        """
        while self.is_paused and not self.is_cancelled:
            try:
                await asyncio.wait_for(self._resumed.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                continue
        return not self.is_cancelled
