"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from lpkeeper.config.config import Settings, log_summary
from lpkeeper.infra.logging_cfg import build_logger, close_logging, log_event
from lpkeeper.monitoring.metrics import KeeperMetrics, start_exporter
from lpkeeper.orchestrator.supervisor import StartupError, Supervisor


async def main() -> int:
    try:
        cfg = Settings.load()
    except ValueError as exc:
        log = build_logger("lpkeeper", log_dir=None)
        log_event(log, "config_invalid", level=logging.ERROR, err=str(exc))
        return 1

    log = build_logger("lpkeeper", level=cfg.log_level, log_dir=cfg.log_dir)
    log_summary(cfg)

    metrics = KeeperMetrics()
    if cfg.metrics_port > 0:
        start_exporter(metrics, cfg.metrics_port)
        log_event(log, "metrics_exporter_started", port=cfg.metrics_port)

    supervisor = Supervisor(cfg, logger=log, metrics=metrics)
    try:
        supervisor.prepare()
    except StartupError as exc:
        log_event(log, "startup_failed", level=logging.CRITICAL, err=str(exc))
        close_logging(log)
        return 1

    loop = asyncio.get_running_loop()
    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, supervisor.request_shutdown, sig.name)
        except NotImplementedError:
            pass

    await supervisor.run()
    return 0


def cli() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nKeeper stopped by user")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    cli()
