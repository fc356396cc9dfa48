"""
lpkeeper: supervisor for concentrated-liquidity positions.

Tails an opportunities ledger into per-pool state documents, fans new
documents out to the provisioning action, and runs the price refresh,
reward harvest and swap sweep schedules until signalled to stop.
"""

__version__ = "0.1.0"
