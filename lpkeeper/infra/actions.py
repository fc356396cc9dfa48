"""
Async runner for the external action commands.

Every collaborator (provision, harvest, remove, price fetch, holdings
listing, swap) is a separate process. The runner builds the argv, runs it
without a shell, captures merged stdout/stderr and enforces a timeout scoped
to that single invocation.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shlex
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from lpkeeper.config.config import Settings

log = logging.getLogger("lpkeeper")

# "token: <address>, amount: ..." lines printed by the holdings listing
_HOLDING_RE = re.compile(r"token:\s*([^\s,]+)\s*,")
# Base58 account addresses are 32..44 characters long
MIN_ADDRESS_LEN = 32
MAX_ADDRESS_LEN = 44
# Tail of captured output kept in the log
OUTPUT_LOG_LIMIT = 4000


class ActionError(RuntimeError):
    """An external action exited non-zero, timed out or failed to start."""

    def __init__(self, result: "ActionResult") -> None:
        self.result = result
        super().__init__(result.describe())


@dataclass
class ActionResult:
    """Outcome of one external action invocation."""
    action: str
    argv: List[str]
    returncode: Optional[int]
    output: str = ""
    timed_out: bool = False
    duration_sec: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.error is None

    @property
    def outcome(self) -> str:
        if self.ok:
            return "ok"
        if self.timed_out:
            return "timeout"
        if self.error is not None:
            return "spawn_error"
        return "failed"

    def describe(self) -> str:
        if self.timed_out:
            return f"{self.action} timed out after {self.duration_sec:.1f}s"
        if self.error is not None:
            return f"{self.action} could not start: {self.error}"
        return f"{self.action} exited with code {self.returncode}"

    def raise_for_status(self) -> "ActionResult":
        if not self.ok:
            raise ActionError(self)
        return self


def parse_price(output: str) -> Optional[float]:
    """Return the value of the last ``price:`` line, or None."""
    price: Optional[float] = None
    for line in output.splitlines():
        if "price:" not in line:
            continue
        raw = line.split("price:", 1)[1].strip()
        try:
            price = float(raw)
        except ValueError:
            continue
    return price


def parse_holdings(
    output: str,
    min_len: int = MIN_ADDRESS_LEN,
    max_len: int = MAX_ADDRESS_LEN,
) -> List[str]:
    """Extract held token addresses in listing order, without duplicates."""
    seen = set()
    tokens: List[str] = []
    for line in output.splitlines():
        match = _HOLDING_RE.search(line)
        if not match:
            continue
        token = match.group(1).strip()
        if not min_len <= len(token) <= max_len:
            continue
        if token in seen:
            continue
        seen.add(token)
        tokens.append(token)
    return tokens


class ActionRunner:
    """
    Builds and runs the external action commands.

    Usage:
        runner = ActionRunner(settings)
        result = await runner.harvest("PoolAddr")
        if not result.ok:
            ...
    """

    def __init__(self, cfg: "Settings", metrics=None) -> None:
        self.cfg = cfg
        self.metrics = metrics
        self._runner: List[str] = shlex.split(cfg.script_runner)
        self._default_timeout: Optional[float] = cfg.action_timeout_sec or None

    def _script(self, script: str, *args: str) -> List[str]:
        return [*self._runner, script, *args]

    # ========== Collaborators ==========

    async def provision(
        self,
        pool: str,
        token: Optional[str] = None,
        last_updated_first: Optional[str] = None,
    ) -> ActionResult:
        args = [f"--pool={pool}"]
        if token:
            args.append(f"--token={token}")
        if last_updated_first:
            args.append(f"--last_updated_first={last_updated_first}")
        return await self.run("provision", self._script(self.cfg.provision_script, *args))

    async def harvest(self, pool: str) -> ActionResult:
        return await self.run("harvest", self._script(self.cfg.harvest_script, f"--pool={pool}"))

    async def remove(self, pool: str, position: str) -> ActionResult:
        argv = self._script(self.cfg.remove_script, f"--pool={pool}", f"--position={position}")
        return await self.run("remove", argv)

    async def fetch_price(self, pool: str, token: str) -> ActionResult:
        argv = self._script(self.cfg.price_script, f"--pool={pool}", f"--token={token}")
        return await self.run("fetch_price", argv)

    async def list_holdings(self) -> ActionResult:
        return await self.run("list_holdings", shlex.split(self.cfg.holdings_cmd))

    async def swap(self, token: str, max_fee: Optional[int] = None) -> ActionResult:
        fee = self.cfg.swap_max_fee if max_fee is None else max_fee
        argv = [*shlex.split(self.cfg.swap_cmd), "-input", token, "-maxFee", str(fee)]
        return await self.run("swap", argv, timeout=self.cfg.swap_timeout_sec)

    # ========== Process execution ==========

    async def run(
        self,
        action: str,
        argv: Sequence[str],
        timeout: Optional[float] = None,
    ) -> ActionResult:
        """
        Run one command to completion or timeout.

        Never raises for non-zero exits, timeouts or spawn errors; those are
        reported on the result. Cancellation kills the child and propagates.
        """
        argv = list(argv)
        limit = self._default_timeout if timeout is None else timeout
        log.info(json.dumps({"event": "action_start", "action": action, "cmd": _join(argv)}))
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self.cfg.actions_cwd,
            )
        except OSError as exc:
            result = ActionResult(action, argv, None, error=str(exc),
                                  duration_sec=time.monotonic() - start)
            self._record(result)
            return result

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            await _kill(proc)
            result = ActionResult(action, argv, proc.returncode, timed_out=True,
                                  duration_sec=time.monotonic() - start)
            self._record(result)
            return result
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        if output:
            log.info(json.dumps({"event": "action_output", "action": action, "output": output[-OUTPUT_LOG_LIMIT:]}, ensure_ascii=False))
        result = ActionResult(action, argv, proc.returncode, output=output,
                              duration_sec=time.monotonic() - start)
        self._record(result)
        return result

    def _record(self, result: ActionResult) -> None:
        if self.metrics is not None:
            self.metrics.record_action(result.action, result.outcome, result.duration_sec)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()


def _join(argv: Iterable[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)
