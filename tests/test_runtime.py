"""Tests for the asyncio loops and orchestrator shutdown."""

import asyncio
import threading
import time

import pytest

from sweepstake.coordinator import TriggerCoordinator
from sweepstake.ingest import EventIngestor
from sweepstake.models.events import EventKind
from sweepstake.runtime import Orchestrator, run_periodic
from sweepstake.view import ViewAggregator


def _run_for(orchestrator: Orchestrator, seconds: float) -> float:
    """Run the orchestrator, set stop after `seconds`, and return how long stopping took."""

    async def main():
        loop = asyncio.get_running_loop()
        stop = asyncio.Event()
        loop.call_later(seconds, stop.set)
        started = loop.time()
        await orchestrator.run(stop)
        return loop.time() - started - seconds

    return asyncio.run(main())


def test_periodic_loop_survives_exceptions():
    """An exception in one tick is logged and the loop keeps ticking."""
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")

    async def main():
        stop = asyncio.Event()
        asyncio.get_running_loop().call_later(0.2, stop.set)
        return await run_periodic("flaky", 0.01, flaky, stop)

    ticks = asyncio.run(main())

    assert ticks >= 2
    assert len(calls) == ticks


def test_periodic_ticks_never_overlap():
    """A slow tick delays the next one instead of running concurrently."""
    lock = threading.Lock()
    active = []
    overlaps = []

    def slow():
        with lock:
            active.append(1)
            if len(active) > 1:
                overlaps.append(1)
        time.sleep(0.03)
        with lock:
            active.pop()

    async def main():
        stop = asyncio.Event()
        asyncio.get_running_loop().call_later(0.2, stop.set)
        return await run_periodic("slow", 0.001, slow, stop)

    ticks = asyncio.run(main())

    assert ticks >= 2
    assert overlaps == []


def test_on_result_receives_tick_value():
    results = []

    async def main():
        stop = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, stop.set)
        await run_periodic("value", 0.01, lambda: 42, stop, results.append)

    asyncio.run(main())

    assert results and set(results) == {42}


def test_trigger_loop_submits_once(ledger, clock):
    """The trigger loop requests the draw once; later ticks see Drawing."""
    clock.now = 1700
    ledger.update(participant_count=3)
    orchestrator = Orchestrator(
        ledger,
        coordinator=TriggerCoordinator(ledger, clock=clock),
        trigger_interval=0.01,
    )

    _run_for(orchestrator, 0.2)

    assert ledger.submit_calls == 1
    assert ledger.read_calls > 1
    assert ledger.state.drawing_in_progress


def test_ingest_and_view_run_together(ledger, clock, store):
    """Ingestion and view polling run side by side and stop cleanly."""
    ledger.emit(EventKind.ENTRY_RECORDED, 1, 10, participant="0xa", numbers=[1])
    ledger.emit(EventKind.ENTRY_RECORDED, 1, 11, participant="0xb", numbers=[2])
    snapshots = []
    orchestrator = Orchestrator(
        ledger,
        ingestor=EventIngestor(ledger, store),
        view=ViewAggregator(ledger, clock=clock),
        view_interval=0.01,
        shutdown_grace=2.0,
        on_snapshot=snapshots.append,
    )

    overshoot = _run_for(orchestrator, 0.2)

    assert [r.block_number for r in store.read_all()] == [10, 11]
    assert snapshots and snapshots[-1].round_id == 1
    # The blocked subscription is released by shutdown, well within the grace period
    assert overshoot < 1.0


def test_shutdown_grace_bounds_wait():
    """A tick that outlives the grace period does not hold up shutdown."""
    class SlowCoordinator:
        def tick(self):
            time.sleep(0.4)

    orchestrator = Orchestrator(
        client=None,
        coordinator=SlowCoordinator(),
        trigger_interval=0.01,
        shutdown_grace=0.05,
    )

    overshoot = _run_for(orchestrator, 0.05)

    assert overshoot < 0.3


def test_from_config_requires_store_for_ingest(ledger, state_config):
    with pytest.raises(ValueError, match="history store"):
        Orchestrator.from_config(state_config, ledger, trigger=False, ingest=True)


def test_from_config_wires_selected_loops(ledger, state_config, store):
    orchestrator = Orchestrator.from_config(state_config, ledger, store=store, trigger=True, ingest=True)

    assert orchestrator.coordinator is not None
    assert orchestrator.ingestor is not None
    assert orchestrator.view is None
    assert orchestrator.trigger_interval == state_config.loops.trigger_interval_seconds
    assert orchestrator.ingestor.resubscribe_delay == state_config.events.poll_interval_seconds
