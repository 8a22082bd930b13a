"""Time source abstraction so delays and checkpoints can be driven by tests."""

import asyncio
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Clock:
    """Wall clock backed by asyncio."""

    def now(self) -> datetime:
        return utc_now()

    async def sleep(self, seconds: float, interrupt: Optional[asyncio.Event] = None) -> bool:
        """
        Sleep for the given number of seconds.

        Returns False if the interrupt event was set before the time elapsed.
        """
        if seconds <= 0:
            return interrupt is None or not interrupt.is_set()
        if interrupt is None:
            await asyncio.sleep(seconds)
            return True
        try:
            await asyncio.wait_for(interrupt.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False
