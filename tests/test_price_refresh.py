"""
Tests for PriceRefresh passes and the removal trigger.
"""

import asyncio

import pytest

from conftest import TOKEN_A, TOKEN_B, failed_result
from lpkeeper.monitoring.metrics import KeeperMetrics
from lpkeeper.risk.removal_monitor import Monitoring, RemovalMonitor, Removed
from lpkeeper.scheduling.price_refresh import PriceRefresh
from lpkeeper.state.store import DocumentStore


@pytest.fixture
def store(tmp_path):
    s = DocumentStore(tmp_path / "data")
    s.ensure()
    return s


def tracked(store, pool, token, c=None, position=None):
    data = {"poolAddress": pool, "ca": token}
    if c is not None:
        data["c"] = c
    payload = {"poolAddress": pool, "data": data}
    if position:
        payload["positionAddress"] = position
    store.write(pool, payload)


def make_refresh(store, runner, **kwargs):
    kwargs.setdefault("item_delay_sec", 0.0)
    kwargs.setdefault("clock", lambda: 1000.0)
    return PriceRefresh(store, runner, asyncio.Event(), **kwargs)


@pytest.mark.asyncio
async def test_fetches_every_document_with_token(store, fake_runner):
    tracked(store, "P1", TOKEN_A)
    tracked(store, "P2", TOKEN_B)
    store.write("NOCA", {"poolAddress": "NOCA", "data": {}})
    fake_runner.prices = {"P1": "0.5", "P2": "1.25"}

    report = await make_refresh(store, fake_runner).run_once()

    assert fake_runner.calls_for("fetch_price") == [(("P1", TOKEN_A), {}), (("P2", TOKEN_B), {})]
    assert report.succeeded == 2


@pytest.mark.asyncio
async def test_unparseable_output_counts_as_failure(store, fake_runner):
    tracked(store, "P1", TOKEN_A)
    tracked(store, "P2", TOKEN_B)
    fake_runner.prices = {"P2": "2.0"}
    fake_runner.results[("fetch_price", "P1")] = failed_result("fetch_price", output="rpc error")

    report = await make_refresh(store, fake_runner).run_once()

    assert report.failed == 1
    assert report.succeeded == 1
    assert report.failures == ["P1"]


@pytest.mark.asyncio
async def test_empty_store(store, fake_runner):
    report = await make_refresh(store, fake_runner).run_once()
    assert report.attempted == 0


@pytest.mark.asyncio
async def test_price_below_threshold_triggers_removal(store, fake_runner):
    tracked(store, "P1", TOKEN_A, c="2.0", position="POS1")
    fake_runner.prices = {"P1": "0.5"}
    monitor = RemovalMonitor(threshold_ratio=0.4)

    await make_refresh(store, fake_runner, monitor=monitor).run_once()

    assert fake_runner.calls_for("remove") == [(("P1", "POS1"), {})]
    assert monitor.state("P1") == Removed(at=1000.0)


@pytest.mark.asyncio
async def test_removed_pool_not_removed_twice(store, fake_runner):
    tracked(store, "P1", TOKEN_A, c=2.0, position="POS1")
    fake_runner.prices = {"P1": "0.5"}
    refresh = make_refresh(store, fake_runner, monitor=RemovalMonitor())

    await refresh.run_once()
    await refresh.run_once()

    assert len(fake_runner.calls_for("remove")) == 1


@pytest.mark.asyncio
async def test_price_above_threshold_holds(store, fake_runner):
    tracked(store, "P1", TOKEN_A, c=2.0, position="POS1")
    fake_runner.prices = {"P1": "0.9"}

    await make_refresh(store, fake_runner, monitor=RemovalMonitor()).run_once()

    assert fake_runner.calls_for("remove") == []


@pytest.mark.asyncio
async def test_unprovisioned_pool_never_removed(store, fake_runner):
    tracked(store, "P1", TOKEN_A, c=2.0)
    fake_runner.prices = {"P1": "0.01"}

    await make_refresh(store, fake_runner, monitor=RemovalMonitor()).run_once()

    assert fake_runner.calls_for("remove") == []


@pytest.mark.asyncio
async def test_grace_period_delays_removal(store, fake_runner):
    tracked(store, "P1", TOKEN_A, c=2.0, position="POS1")
    fake_runner.prices = {"P1": "0.5"}
    now = [1000.0]
    monitor = RemovalMonitor(grace_sec=120)
    refresh = make_refresh(store, fake_runner, monitor=monitor, clock=lambda: now[0])

    await refresh.run_once()
    assert fake_runner.calls_for("remove") == []
    assert isinstance(monitor.state("P1"), Monitoring)

    now[0] = 1130.0
    await refresh.run_once()
    assert len(fake_runner.calls_for("remove")) == 1


@pytest.mark.asyncio
async def test_failed_removal_retried_next_pass(store, fake_runner):
    tracked(store, "P1", TOKEN_A, c=2.0, position="POS1")
    fake_runner.prices = {"P1": "0.5"}
    fake_runner.results[("remove", "P1")] = failed_result("remove")
    metrics = KeeperMetrics()
    refresh = make_refresh(store, fake_runner, monitor=RemovalMonitor(), metrics=metrics)

    await refresh.run_once()
    await refresh.run_once()

    assert len(fake_runner.calls_for("remove")) == 2
    assert metrics.registry.get_sample_value("removal_monitor_pools", {"state": "removed"}) == 0.0
