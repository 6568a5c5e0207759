# src/session_guard/clock.py
"""
Time source and timer scheduling for the session layer.

All waiting done by the layer (retry backoff, proactive renewal, heartbeat,
reachability probing) goes through a Clock so that it can be driven by
virtual time in tests.
"""

import asyncio
import time
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    def time(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopClock:
    """Wall-clock time with timers scheduled on the running asyncio loop."""

    def time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)
