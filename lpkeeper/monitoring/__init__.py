"""
Monitoring package: Prometheus metrics and exporter.
"""

from lpkeeper.monitoring.metrics import KeeperMetrics, start_exporter

__all__ = [
    "KeeperMetrics",
    "start_exporter",
]
