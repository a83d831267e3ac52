"""
Delay primitive used between poll ticks.

Kept behind a small protocol so tests can substitute a virtual clock
(see ``sfmigrator.testing.VirtualScheduler``).
"""

from __future__ import annotations

import asyncio
from typing import Protocol


class Scheduler(Protocol):
    """Suspends the caller for a number of seconds."""

    async def sleep(self, seconds: float) -> None: ...


class AsyncioScheduler:
    """Real-time scheduler backed by ``asyncio.sleep``."""

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


DEFAULT_SCHEDULER = AsyncioScheduler()
