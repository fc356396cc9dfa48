"""
RemovalMonitor: explicit per-pool state for price-threshold removal.

A pool's liquidity is pulled when the token price falls below
``reference * threshold_ratio`` (reference = the ledger's ``c`` value).
With a grace period the pool first enters ``Monitoring`` and is only removed
if it stays below the target for ``grace_sec``; recovering above the target
returns it to ``Idle``.

States:
    Idle                      -> price >= target: HOLD
    Idle                      -> price <  target: Monitoring, then REMOVE or WATCH
    Monitoring(since, target) -> price >= target: Idle, RECOVERED
    Monitoring(since, target) -> price <  target: REMOVE once grace elapsed, else WATCH
    Removed(at)               -> SKIP (terminal for the process lifetime)

Owned by the price refresh scheduler; the map is lock-guarded so reads from
other components (metrics, status) are consistent.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union


class Decision(Enum):
    HOLD = "hold"
    WATCH = "watch"
    RECOVERED = "recovered"
    REMOVE = "remove"
    SKIP = "skip"


@dataclass(frozen=True)
class Idle:
    label = "idle"


@dataclass(frozen=True)
class Monitoring:
    since: float
    target: float
    label = "monitoring"


@dataclass(frozen=True)
class Removed:
    at: float
    label = "removed"


MonitorState = Union[Idle, Monitoring, Removed]

IDLE = Idle()


class RemovalMonitor:
    """
    Usage:
        monitor = RemovalMonitor(threshold_ratio=0.4, grace_sec=0)
        decision = monitor.evaluate(pool, price=0.8, reference=3.0)
        if decision is Decision.REMOVE:
            ok = await runner.remove(pool, position)
            monitor.mark_removed(pool) if ok else monitor.reset(pool)
    """

    def __init__(self, threshold_ratio: float = 0.4, grace_sec: float = 0.0) -> None:
        if not 0 < threshold_ratio <= 1:
            raise ValueError("threshold_ratio must be within (0, 1]")
        if grace_sec < 0:
            raise ValueError("grace_sec must be >= 0")
        self.threshold_ratio = threshold_ratio
        self.grace_sec = grace_sec
        self._states: Dict[str, MonitorState] = {}
        self._lock = threading.Lock()

    def target_for(self, reference: float) -> float:
        return reference * self.threshold_ratio

    def state(self, pool: str) -> MonitorState:
        with self._lock:
            return self._states.get(pool, IDLE)

    def evaluate(
        self,
        pool: str,
        price: float,
        reference: float,
        now: Optional[float] = None,
    ) -> Decision:
        now = time.time() if now is None else now
        target = self.target_for(reference)
        with self._lock:
            current = self._states.get(pool, IDLE)
            if isinstance(current, Removed):
                return Decision.SKIP

            if price >= target:
                self._states.pop(pool, None)
                if isinstance(current, Monitoring):
                    return Decision.RECOVERED
                return Decision.HOLD

            if isinstance(current, Monitoring):
                since = current.since
            else:
                since = now
            self._states[pool] = Monitoring(since=since, target=target)
            if now - since >= self.grace_sec:
                return Decision.REMOVE
            return Decision.WATCH

    def mark_removed(self, pool: str, now: Optional[float] = None) -> None:
        with self._lock:
            self._states[pool] = Removed(at=time.time() if now is None else now)

    def reset(self, pool: str) -> None:
        """Back to Idle, e.g. after a failed removal so the next pass retries."""
        with self._lock:
            self._states.pop(pool, None)

    def counts(self) -> Dict[str, int]:
        with self._lock:
            out = {"idle": 0, "monitoring": 0, "removed": 0}
            for st in self._states.values():
                out[st.label] += 1
            return out
