"""
Tests for ProvisioningDispatcher.

Tests cover:
- Duplicate creation events dispatch once
- Concurrency ceiling under a burst of documents
- Documents without a pool address are not provisioned
- A failing action still releases its permit
- No new work after the stop event is set
"""

import asyncio

import pytest

from conftest import TOKEN_A, failed_result
from lpkeeper.execution.dispatcher import ProvisioningDispatcher
from lpkeeper.state.store import DocumentStore


@pytest.fixture
def store(tmp_path):
    s = DocumentStore(tmp_path / "data")
    s.ensure()
    return s


def add_doc(store, pool, **data):
    payload = {"poolAddress": pool, "headers": [], "record": [], "data": {"poolAddress": pool, **data}}
    return store.write(pool, payload)


def make_dispatcher(store, runner, stop_event=None, **kwargs):
    return ProvisioningDispatcher(
        store,
        runner,
        stop_event or asyncio.Event(),
        settle_sec=0.0,
        **kwargs,
    )


class TestDispatch:

    @pytest.mark.asyncio
    async def test_provision_called_with_document_fields(self, store, fake_runner):
        path = add_doc(store, "ABC123", ca=TOKEN_A, last_updated_first="2025-09-11 05:02:00")
        dispatcher = make_dispatcher(store, fake_runner)

        assert await dispatcher.submit(path) is True
        await dispatcher.drain()

        calls = fake_runner.calls_for("provision")
        assert calls == [(("ABC123",), {"token": TOKEN_A, "last_updated_first": "2025-09-11 05:02:00"})]

    @pytest.mark.asyncio
    async def test_optional_fields_absent(self, store, fake_runner):
        path = add_doc(store, "P1")
        dispatcher = make_dispatcher(store, fake_runner)

        await dispatcher.submit(path)
        await dispatcher.drain()

        assert fake_runner.calls_for("provision") == [(("P1",), {"token": None, "last_updated_first": None})]

    @pytest.mark.asyncio
    async def test_duplicate_event_dispatched_once(self, store, fake_runner):
        path = add_doc(store, "DUP", ca=TOKEN_A)
        dispatcher = make_dispatcher(store, fake_runner)

        first = await dispatcher.submit(path)
        second = await dispatcher.submit(str(path))
        await dispatcher.drain()

        assert first is True
        assert second is False
        assert len(fake_runner.calls_for("provision")) == 1

    @pytest.mark.asyncio
    async def test_missing_pool_address_not_provisioned(self, store, fake_runner):
        path = store.write("orphan", {"headers": [], "record": [], "data": {}})
        dispatcher = make_dispatcher(store, fake_runner)

        await dispatcher.submit(path)
        await dispatcher.drain()

        assert fake_runner.calls_for("provision") == []

    @pytest.mark.asyncio
    async def test_unreadable_document_not_provisioned(self, store, fake_runner):
        bad = store.data_dir / "broken.json"
        bad.write_text("{not json")
        dispatcher = make_dispatcher(store, fake_runner)

        await dispatcher.submit(bad)
        await dispatcher.drain()

        assert fake_runner.calls_for("provision") == []
        assert dispatcher.in_flight == 0


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_burst_respects_ceiling(self, store, fake_runner):
        fake_runner.delay = 0.02
        paths = [add_doc(store, f"POOL{i:02d}", ca=TOKEN_A) for i in range(30)]
        dispatcher = make_dispatcher(store, fake_runner, max_concurrent=5)

        for p in paths:
            await dispatcher.submit(p)
        await dispatcher.drain()

        assert len(fake_runner.calls_for("provision")) == 30
        assert fake_runner.peak_running <= 5
        assert dispatcher.peak_in_flight <= 5
        assert dispatcher.in_flight == 0

    @pytest.mark.asyncio
    async def test_failure_releases_permit(self, store, fake_runner):
        fake_runner.results[("provision", "BAD")] = failed_result("provision", rc=2)
        bad = add_doc(store, "BAD")
        good = add_doc(store, "GOOD")
        dispatcher = make_dispatcher(store, fake_runner, max_concurrent=1)

        await dispatcher.submit(bad)
        await asyncio.wait_for(dispatcher.submit(good), timeout=2.0)
        await dispatcher.drain()

        pools = [args[0] for args, _ in fake_runner.calls_for("provision")]
        assert pools == ["BAD", "GOOD"]

    @pytest.mark.asyncio
    async def test_exception_in_action_releases_permit(self, store, fake_runner):
        def boom(action, key):
            if key == "EXPLODE":
                raise RuntimeError("spawn exploded")

        fake_runner.on_call = boom
        first = add_doc(store, "EXPLODE")
        second = add_doc(store, "AFTER")
        dispatcher = make_dispatcher(store, fake_runner, max_concurrent=1)

        await dispatcher.submit(first)
        await asyncio.wait_for(dispatcher.submit(second), timeout=2.0)
        await dispatcher.drain()

        assert dispatcher.in_flight == 0
        assert len(fake_runner.calls_for("provision")) == 2

    def test_invalid_ceiling_rejected(self, store, fake_runner):
        with pytest.raises(ValueError):
            ProvisioningDispatcher(store, fake_runner, asyncio.Event(), max_concurrent=0)


class TestShutdown:

    @pytest.mark.asyncio
    async def test_submit_after_stop_returns_false(self, store, fake_runner):
        stop = asyncio.Event()
        stop.set()
        path = add_doc(store, "LATE")
        dispatcher = make_dispatcher(store, fake_runner, stop_event=stop)

        assert await dispatcher.submit(path) is False
        assert fake_runner.calls_for("provision") == []

    @pytest.mark.asyncio
    async def test_stop_during_settle_skips_action(self, store, fake_runner):
        stop = asyncio.Event()

        async def settle(_seconds):
            stop.set()

        path = add_doc(store, "SETTLING")
        dispatcher = ProvisioningDispatcher(store, fake_runner, stop, settle_sec=0.1, sleep=settle)

        assert await dispatcher.submit(path) is True
        await dispatcher.drain()

        assert fake_runner.calls_for("provision") == []

    @pytest.mark.asyncio
    async def test_submit_does_not_wait_for_settle(self, store, fake_runner):
        settled = asyncio.Event()
        started = []

        async def settle(_seconds):
            started.append(True)
            await settled.wait()

        first = add_doc(store, "SLOW1")
        second = add_doc(store, "SLOW2")
        dispatcher = ProvisioningDispatcher(store, fake_runner, asyncio.Event(), settle_sec=5.0, sleep=settle)

        assert await asyncio.wait_for(dispatcher.submit(first), timeout=1.0) is True
        assert await asyncio.wait_for(dispatcher.submit(second), timeout=1.0) is True
        await asyncio.sleep(0)

        assert len(started) == 2
        assert dispatcher.in_flight == 2
        assert fake_runner.calls_for("provision") == []

        settled.set()
        await dispatcher.drain()
        assert len(fake_runner.calls_for("provision")) == 2

    @pytest.mark.asyncio
    async def test_waiting_submit_abandoned_on_stop(self, store, fake_runner):
        fake_runner.delay = 0.05
        stop = asyncio.Event()
        first = add_doc(store, "FIRST")
        second = add_doc(store, "SECOND")
        dispatcher = make_dispatcher(store, fake_runner, stop_event=stop, max_concurrent=1)

        await dispatcher.submit(first)
        waiting = asyncio.create_task(dispatcher.submit(second))
        while fake_runner.running == 0:
            await asyncio.sleep(0.001)
        stop.set()

        assert await waiting is False
        await dispatcher.drain()
        pools = [args[0] for args, _ in fake_runner.calls_for("provision")]
        assert pools == ["FIRST"]
