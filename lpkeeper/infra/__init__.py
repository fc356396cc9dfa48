"""
Infrastructure package.

Logging configuration, JSON helpers and the external action runner.
"""

from lpkeeper.infra.actions import ActionError, ActionResult, ActionRunner, parse_holdings, parse_price
from lpkeeper.infra.logging_cfg import build_logger, close_logging, log_event

__all__ = [
    "ActionError",
    "ActionResult",
    "ActionRunner",
    "parse_holdings",
    "parse_price",
    "build_logger",
    "close_logging",
    "log_event",
]
