"""
Wall-clock alignment helpers for the periodic schedulers.

Triggers land on fixed seconds of the minute (e.g. :01, :02/:32) rather than
"N seconds after start", so cadence is predictable across restarts.
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import Callable, Iterable


def next_aligned(now: float, offsets: Iterable[int]) -> float:
    """
    Earliest epoch instant strictly after ``now`` whose second-of-minute is
    one of ``offsets``.
    """
    secs = sorted({int(o) for o in offsets})
    if not secs:
        raise ValueError("offsets must not be empty")
    minute = math.floor(now / 60.0) * 60.0
    for base in (minute, minute + 60.0):
        for sec in secs:
            candidate = base + sec
            if candidate > now:
                return candidate
    # Unreachable for offsets within 0..59
    return minute + 120.0 + secs[0]


async def sleep_until(
    deadline: float,
    stop_event: asyncio.Event,
    clock: Callable[[], float] = time.time,
) -> bool:
    """
    Wait until ``deadline`` (epoch seconds) or until ``stop_event`` is set.

    Returns:
        True if the deadline was reached, False if cancellation fired first
    """
    if stop_event.is_set():
        return False
    delay = max(0.0, deadline - clock())
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return not stop_event.is_set()
    return False


async def interruptible_sleep(seconds: float, stop_event: asyncio.Event) -> bool:
    """Relative variant of ``sleep_until``; True when the full delay elapsed."""
    if stop_event.is_set():
        return False
    if seconds <= 0:
        return True
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return not stop_event.is_set()
    return False
