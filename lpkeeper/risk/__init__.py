"""
Risk package: price-threshold removal state.
"""

from lpkeeper.risk.removal_monitor import (
    Decision,
    Idle,
    Monitoring,
    MonitorState,
    RemovalMonitor,
    Removed,
)

__all__ = [
    "Decision",
    "Idle",
    "Monitoring",
    "MonitorState",
    "RemovalMonitor",
    "Removed",
]
