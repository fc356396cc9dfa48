"""
Scheduling package: wall-clock aligned periodic sweeps.

- PriceRefresh: oracle price per token, feeds the removal monitor
- RewardHarvest: fee/reward claims for provisioned pools
- SwapSweep: swap held tokens except blacklisted ones
"""

from lpkeeper.scheduling.base import PassReport, PeriodicScheduler
from lpkeeper.scheduling.cadence import interruptible_sleep, next_aligned, sleep_until
from lpkeeper.scheduling.harvest import RewardHarvest
from lpkeeper.scheduling.price_refresh import PriceRefresh
from lpkeeper.scheduling.swap_sweep import SwapSweep

__all__ = [
    "PassReport",
    "PeriodicScheduler",
    "PriceRefresh",
    "RewardHarvest",
    "SwapSweep",
    "interruptible_sleep",
    "next_aligned",
    "sleep_until",
]
