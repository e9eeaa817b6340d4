"""
Pacer

Rate limiting between platform calls, with a per-second countdown and
interruption by pause or cancel at every tick.
"""

import asyncio
import math
from typing import Callable, Optional

from sitedesk.jobs.control import JobControl, Sleep

TICK_SECONDS = 1.0

CountdownCallback = Callable[[int], None]


class Pacer:
    """Holds execution between units of work.

    Waits are sliced into ticks of at most one second. Before each tick
    the countdown (whole seconds remaining, rounded up) is published and
    the control flags are checked, so a pause or cancel takes effect
    without waiting out the full delay.
    """

    def __init__(self, control: JobControl, sleep: Sleep = asyncio.sleep, honor_pause: bool = True):
        self.control = control
        self.sleep = sleep
        self.honor_pause = honor_pause

    def interrupted(self) -> bool:
        return self.control.cancelled or (self.honor_pause and self.control.paused)

    async def wait_before(
        self,
        index: int,
        delay: float,
        on_tick: Optional[CountdownCallback] = None,
    ) -> bool:
        """Wait `delay` seconds before item `index`; the first item is never delayed.

        Returns True when the wait ran to the end, False when interrupted.
        """
        if index == 0:
            return True
        return await self.hold(delay, on_tick)

    async def hold(self, seconds: float, on_tick: Optional[CountdownCallback] = None) -> bool:
        """Wait `seconds`, checking the control flags at every tick."""
        remaining = float(seconds)
        if remaining <= 0:
            return True

        try:
            while remaining > 0:
                if self.interrupted():
                    return False
                if on_tick:
                    on_tick(math.ceil(remaining))
                step = min(TICK_SECONDS, remaining)
                await self.sleep(step)
                remaining -= step
            return True
        finally:
            if on_tick:
                on_tick(0)
