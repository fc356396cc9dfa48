"""
Pytest configuration and fixtures.
Adds the repo root to sys.path so tests can import lpkeeper without install.
"""

import asyncio
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from lpkeeper.config.config import Settings  # noqa: E402
from lpkeeper.infra.actions import ActionResult  # noqa: E402

# 44-character base58-looking addresses used across tests
TOKEN_A = "TokA" + "1" * 40
TOKEN_B = "TokB" + "2" * 40
TOKEN_C = "TokC" + "3" * 40
TOKEN_D = "TokD" + "4" * 40
TOKEN_E = "TokE" + "5" * 40


def make_settings(tmp_path: Path, **overrides) -> Settings:
    """Settings rooted in tmp_path with zero delays for fast tests."""
    base = Settings(
        ledger_path=str(tmp_path / "ledger" / "auto_profit.csv"),
        data_dir=str(tmp_path / "data"),
        log_dir=str(tmp_path / "log"),
        blacklist_path=str(tmp_path / "blacklist.txt"),
        log_level="INFO",
        actions_cwd=str(tmp_path),
        script_runner="npx ts-node",
        provision_script="addLiquidity.ts",
        harvest_script="claimAllRewards.ts",
        remove_script="removeLiquidity.ts",
        price_script="fetchPrice.ts",
        holdings_cmd="./listTokens",
        swap_cmd="./jupSwap",
        swap_max_fee=50000,
        action_timeout_sec=30.0,
        swap_timeout_sec=30.0,
        max_concurrent=20,
        ledger_settle_sec=0.0,
        doc_settle_sec=0.0,
        price_offsets=(1,),
        harvest_offsets=(2, 32),
        swap_offsets=(6,),
        price_item_delay_sec=0.0,
        swap_item_delay_sec=0.0,
        removal_threshold_ratio=0.4,
        removal_grace_sec=0.0,
        removal_enabled=True,
        force_exit_on_second_signal=True,
        metrics_port=0,
    )
    return replace(base, **overrides)


def ok_result(action: str, output: str = "") -> ActionResult:
    return ActionResult(action=action, argv=[action], returncode=0, output=output)


def failed_result(action: str, rc: int = 1, output: str = "") -> ActionResult:
    return ActionResult(action=action, argv=[action], returncode=rc, output=output)


class FakeRunner:
    """
    Stand-in for ActionRunner that records calls.

    Per-identifier results can be preset; anything else succeeds.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[str, tuple, dict]] = []
        self.results: Dict[Tuple[str, str], ActionResult] = {}
        self.prices: Dict[str, str] = {}
        self.holdings_output = ""
        self.holdings_ok = True
        self.delay = 0.0
        self.running = 0
        self.peak_running = 0
        self.on_call = None

    def calls_for(self, action: str) -> List[Tuple[tuple, dict]]:
        return [(args, kwargs) for name, args, kwargs in self.calls if name == action]

    async def _record(self, action: str, key: str, *args, **kwargs) -> ActionResult:
        self.calls.append((action, args, kwargs))
        self.running += 1
        self.peak_running = max(self.peak_running, self.running)
        try:
            if self.on_call is not None:
                self.on_call(action, key)
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.running -= 1
        return self.results.get((action, key), ok_result(action))

    async def provision(self, pool: str, token: Optional[str] = None,
                        last_updated_first: Optional[str] = None) -> ActionResult:
        return await self._record("provision", pool, pool, token=token,
                                  last_updated_first=last_updated_first)

    async def harvest(self, pool: str) -> ActionResult:
        return await self._record("harvest", pool, pool)

    async def remove(self, pool: str, position: str) -> ActionResult:
        return await self._record("remove", pool, pool, position)

    async def fetch_price(self, pool: str, token: str) -> ActionResult:
        self.calls.append(("fetch_price", (pool, token), {}))
        if ("fetch_price", pool) in self.results:
            return self.results[("fetch_price", pool)]
        price = self.prices.get(pool)
        output = f"OKX DEX latest price: {price}\nprice: {price}\n" if price is not None else "no price\n"
        return ok_result("fetch_price", output)

    async def list_holdings(self) -> ActionResult:
        self.calls.append(("list_holdings", (), {}))
        if not self.holdings_ok:
            return failed_result("list_holdings")
        return ok_result("list_holdings", self.holdings_output)

    async def swap(self, token: str, max_fee: Optional[int] = None) -> ActionResult:
        return await self._record("swap", token, token, max_fee)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def fake_runner():
    return FakeRunner()
