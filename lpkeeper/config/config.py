"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def env_offsets(key: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    """Parse a comma separated list of second-of-minute offsets."""
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    return tuple(sorted({int(part.strip()) for part in raw.split(",") if part.strip()}))


@dataclass(frozen=True)
class Settings:
    ledger_path: str
    data_dir: str
    log_dir: str
    blacklist_path: str
    log_level: str
    # External actions
    actions_cwd: str
    script_runner: str
    provision_script: str
    harvest_script: str
    remove_script: str
    price_script: str
    holdings_cmd: str
    swap_cmd: str
    swap_max_fee: int
    action_timeout_sec: float
    swap_timeout_sec: float
    # Provisioning fan-out
    max_concurrent: int
    ledger_settle_sec: float
    doc_settle_sec: float
    # Schedules (seconds of the minute)
    price_offsets: Tuple[int, ...]
    harvest_offsets: Tuple[int, ...]
    swap_offsets: Tuple[int, ...]
    price_item_delay_sec: float
    swap_item_delay_sec: float
    # Price-threshold removal
    removal_threshold_ratio: float
    removal_grace_sec: float
    removal_enabled: bool
    # Lifecycle
    force_exit_on_second_signal: bool
    metrics_port: int

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging."""
        return self.__dict__.copy()

    @classmethod
    def load(cls) -> "Settings":
        def _int_env(key: str, default: int) -> int:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return int(raw)

        def _float_env(key: str, default: float) -> float:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return float(raw)

        cfg = cls(
            ledger_path=os.getenv("LP_LEDGER_PATH", "data/auto_profit.csv"),
            data_dir=os.getenv("LP_DATA_DIR", "data"),
            log_dir=os.getenv("LP_LOG_DIR", "data/log"),
            blacklist_path=os.getenv("LP_BLACKLIST_PATH", "data/blacklist.txt"),
            log_level=os.getenv("LP_LOG_LEVEL", "INFO").upper(),
            actions_cwd=os.getenv("LP_ACTIONS_CWD", "."),
            script_runner=os.getenv("LP_SCRIPT_RUNNER", "npx ts-node"),
            provision_script=os.getenv("LP_PROVISION_SCRIPT", "addLiquidity.ts"),
            harvest_script=os.getenv("LP_HARVEST_SCRIPT", "claimAllRewards.ts"),
            remove_script=os.getenv("LP_REMOVE_SCRIPT", "removeLiquidity.ts"),
            price_script=os.getenv("LP_PRICE_SCRIPT", "fetchPrice.ts"),
            holdings_cmd=os.getenv("LP_HOLDINGS_CMD", "./listTokens"),
            swap_cmd=os.getenv("LP_SWAP_CMD", "./jupSwap"),
            swap_max_fee=_int_env("LP_SWAP_MAX_FEE", 50000),
            action_timeout_sec=_float_env("LP_ACTION_TIMEOUT_SEC", 600.0),
            swap_timeout_sec=_float_env("LP_SWAP_TIMEOUT_SEC", 30.0),
            max_concurrent=_int_env("LP_MAX_CONCURRENT", 20),
            ledger_settle_sec=_float_env("LP_LEDGER_SETTLE_SEC", 0.2),
            doc_settle_sec=_float_env("LP_DOC_SETTLE_SEC", 0.1),
            price_offsets=env_offsets("LP_PRICE_OFFSETS", (1,)),
            harvest_offsets=env_offsets("LP_HARVEST_OFFSETS", (2, 32)),
            swap_offsets=env_offsets("LP_SWAP_OFFSETS", (6,)),
            price_item_delay_sec=_float_env("LP_PRICE_ITEM_DELAY_SEC", 1.1),
            swap_item_delay_sec=_float_env("LP_SWAP_ITEM_DELAY_SEC", 2.0),
            removal_threshold_ratio=_float_env("LP_REMOVAL_THRESHOLD_RATIO", 0.4),
            removal_grace_sec=_float_env("LP_REMOVAL_GRACE_SEC", 0.0),
            removal_enabled=env_bool("LP_REMOVAL_ENABLED", True),
            force_exit_on_second_signal=env_bool("LP_FORCE_EXIT_ON_SECOND_SIGNAL", True),
            metrics_port=_int_env("LP_METRICS_PORT", 0),
        )
        cfg._validate()
        return cfg

    def _validate(self) -> None:
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"LP_LOG_LEVEL must be a logging level name, got {self.log_level!r}")
        if self.max_concurrent <= 0:
            raise ValueError("LP_MAX_CONCURRENT must be > 0")
        for key, offsets in (
            ("LP_PRICE_OFFSETS", self.price_offsets),
            ("LP_HARVEST_OFFSETS", self.harvest_offsets),
            ("LP_SWAP_OFFSETS", self.swap_offsets),
        ):
            if not offsets:
                raise ValueError(f"{key} must name at least one second")
            if any(o < 0 or o > 59 for o in offsets):
                raise ValueError(f"{key} offsets must be within 0..59")
        for key, value in (
            ("LP_LEDGER_SETTLE_SEC", self.ledger_settle_sec),
            ("LP_DOC_SETTLE_SEC", self.doc_settle_sec),
            ("LP_PRICE_ITEM_DELAY_SEC", self.price_item_delay_sec),
            ("LP_SWAP_ITEM_DELAY_SEC", self.swap_item_delay_sec),
            ("LP_ACTION_TIMEOUT_SEC", self.action_timeout_sec),
            ("LP_REMOVAL_GRACE_SEC", self.removal_grace_sec),
        ):
            if value < 0:
                raise ValueError(f"{key} must be >= 0")
        if self.swap_timeout_sec <= 0:
            raise ValueError("LP_SWAP_TIMEOUT_SEC must be > 0")
        if not 0 < self.removal_threshold_ratio <= 1:
            raise ValueError("LP_REMOVAL_THRESHOLD_RATIO must be within (0, 1]")

        if self.price_item_delay_sec < 1.0:
            logging.getLogger("lpkeeper").warning(
                f"WARNING: LP_PRICE_ITEM_DELAY_SEC={self.price_item_delay_sec} is below 1s. "
                "The price oracle rate-limits bursts of requests."
            )
        if self.max_concurrent > 50:
            logging.getLogger("lpkeeper").warning(
                f"WARNING: LP_MAX_CONCURRENT={self.max_concurrent} spawns many provisioning "
                "processes at once; RPC providers may throttle them."
            )


def log_summary(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.

    Called after the log sink exists, so the line lands in the run log.
    """
    import json

    logger = logging.getLogger("lpkeeper")
    payload = {
        "event": "config_loaded",
        "ledger_path": cfg.ledger_path,
        "data_dir": cfg.data_dir,
        "max_concurrent": cfg.max_concurrent,
        "price_offsets": list(cfg.price_offsets),
        "harvest_offsets": list(cfg.harvest_offsets),
        "swap_offsets": list(cfg.swap_offsets),
        "removal_enabled": cfg.removal_enabled,
    }
    logger.info(json.dumps(payload))
