"""
Job Control

Cooperative pause/cancel flags shared between whoever controls a job
and the loop executing it.
"""

import asyncio
from typing import Awaitable, Callable

Sleep = Callable[[float], Awaitable[None]]

PAUSE_POLL_INTERVAL = 0.2


class JobControl:
    """Pause and cancel flags for one job run.

    The controller writes, the running loop reads. `cancelled` is one-way:
    once set it is never reset, and it always wins over `paused`.
    """

    def __init__(self):
        self._paused = False
        self._cancelled = False

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def pause(self) -> None:
        if not self._cancelled:
            self._paused = True

    def resume(self) -> None:
        self._paused = False

    def set_paused(self, paused: bool) -> None:
        if paused:
            self.pause()
        else:
            self.resume()

    def cancel(self) -> None:
        self._cancelled = True
        self._paused = False

    async def wait_while_paused(
        self,
        sleep: Sleep = asyncio.sleep,
        interval: float = PAUSE_POLL_INTERVAL,
    ) -> bool:
        """Suspend while paused.

        Returns False if the job was cancelled, True once it may continue.
        """
        while self._paused and not self._cancelled:
            await sleep(interval)
        return not self._cancelled

    def __repr__(self) -> str:
        return f"JobControl(paused={self._paused}, cancelled={self._cancelled})"
