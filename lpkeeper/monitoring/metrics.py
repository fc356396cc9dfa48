"""
Prometheus metrics for the keeper.

Organized into: external actions, ingest, provisioning, schedulers, removal.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class KeeperMetrics:
    """Counters and gauges for keeper observability."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self.registry = reg

        # === External Actions ===
        self.actions_total = Counter(
            'actions_total',
            'External action invocations',
            labelnames=['action', 'outcome'],
            registry=reg
        )
        self.action_duration = Histogram(
            'action_duration_seconds',
            'Wall time of external actions (seconds)',
            labelnames=['action'],
            buckets=[0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600],
            registry=reg
        )

        # === Ingest ===
        self.ledger_rows = Counter(
            'ledger_rows_total',
            'Ledger rows processed',
            labelnames=['outcome'],
            registry=reg
        )

        # === Provisioning ===
        self.provision_in_flight = Gauge(
            'provision_in_flight',
            'Provisioning actions currently running',
            registry=reg
        )

        # === Schedulers ===
        self.passes_total = Counter(
            'scheduler_passes_total',
            'Completed scheduler passes',
            labelnames=['scheduler'],
            registry=reg
        )
        self.pass_items = Counter(
            'scheduler_items_total',
            'Items handled by scheduler passes',
            labelnames=['scheduler', 'outcome'],
            registry=reg
        )

        # === Removal Monitor ===
        self.removal_state = Gauge(
            'removal_monitor_pools',
            'Pools per removal monitor state',
            labelnames=['state'],
            registry=reg
        )

    def record_action(self, action: str, outcome: str, duration_sec: float) -> None:
        self.actions_total.labels(action=action, outcome=outcome).inc()
        self.action_duration.labels(action=action).observe(duration_sec)

    def record_pass(self, report) -> None:
        self.passes_total.labels(scheduler=report.name).inc()
        for outcome in ("succeeded", "failed", "skipped"):
            count = getattr(report, outcome)
            if count:
                self.pass_items.labels(scheduler=report.name, outcome=outcome).inc(count)


def start_exporter(metrics: KeeperMetrics, port: int) -> None:
    """Serve /metrics on a background thread."""
    start_http_server(port, registry=metrics.registry)
