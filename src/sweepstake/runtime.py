"""Async runtime: independent fixed-interval loops with bounded shutdown."""

import asyncio
import logging
import signal
import threading
from typing import Any, Callable, Optional

from .chain.client import LedgerClient
from .config import OrchestratorConfig
from .coordinator import TriggerCoordinator
from .history.store import HistoryStore
from .ingest import EventIngestor
from .models.view import ViewSnapshot
from .view import ViewAggregator

logger = logging.getLogger(__name__)


async def run_periodic(
    name: str,
    interval: float,
    fn: Callable[[], Any],
    stop: asyncio.Event,
    on_result: Optional[Callable[[Any], None]] = None,
) -> int:
    """Call `fn` in a worker thread every `interval` seconds until `stop` is set.

    A tick always runs to completion before the next one is scheduled, so
    ticks of the same loop never overlap. Exceptions are logged and the
    loop continues.

    Returns:
        Number of ticks run
    """
    loop = asyncio.get_running_loop()
    ticks = 0

    while not stop.is_set():
        started = loop.time()
        try:
            result = await asyncio.to_thread(fn)
        except Exception:
            logger.exception(f"{name} tick failed")
        else:
            if on_result is not None:
                on_result(result)
        ticks += 1

        delay = max(0.0, interval - (loop.time() - started))
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    logger.debug(f"{name} loop stopped after {ticks} tick(s)")
    return ticks


class Orchestrator:
    """Runs the trigger, ingest and view loops side by side.

    Each component is optional; the server runs trigger + ingest, an
    interactive client runs the view alone.
    """

    def __init__(
        self,
        client: LedgerClient,
        *,
        coordinator: Optional[TriggerCoordinator] = None,
        ingestor: Optional[EventIngestor] = None,
        view: Optional[ViewAggregator] = None,
        trigger_interval: float = 30.0,
        view_interval: float = 5.0,
        shutdown_grace: float = 10.0,
        on_snapshot: Optional[Callable[[ViewSnapshot], None]] = None,
    ):
        self.client = client
        self.coordinator = coordinator
        self.ingestor = ingestor
        self.view = view
        self.trigger_interval = trigger_interval
        self.view_interval = view_interval
        self.shutdown_grace = shutdown_grace
        self.on_snapshot = on_snapshot
        self._thread_stop = threading.Event()

    @classmethod
    def from_config(
        cls,
        config: OrchestratorConfig,
        client: LedgerClient,
        *,
        store: Optional[HistoryStore] = None,
        trigger: bool = True,
        ingest: bool = True,
        view: bool = False,
        on_snapshot: Optional[Callable[[ViewSnapshot], None]] = None,
    ) -> "Orchestrator":
        """Wire the components selected by the flags."""
        ingestor = None
        if ingest:
            if store is None:
                raise ValueError("A history store is required for ingestion")
            ingestor = EventIngestor(
                client,
                store,
                resubscribe_delay=config.events.poll_interval_seconds,
            )

        return cls(
            client,
            coordinator=TriggerCoordinator(client) if trigger else None,
            ingestor=ingestor,
            view=ViewAggregator(client) if view else None,
            trigger_interval=config.loops.trigger_interval_seconds,
            view_interval=config.loops.view_interval_seconds,
            shutdown_grace=config.loops.shutdown_grace_seconds,
            on_snapshot=on_snapshot,
        )

    async def _run_ingest(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await asyncio.to_thread(self.ingestor.run, self._thread_stop)
            except Exception:
                logger.exception("Event ingestion crashed; restarting")
            if stop.is_set():
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.ingestor.resubscribe_delay)
            except asyncio.TimeoutError:
                pass

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        """Run until `stop` is set, then wait up to shutdown_grace for in-flight work."""
        stop = stop or asyncio.Event()
        self._thread_stop.clear()
        tasks: list[asyncio.Task] = []

        if self.coordinator is not None:
            tasks.append(asyncio.create_task(
                run_periodic("trigger", self.trigger_interval, self.coordinator.tick, stop),
                name="trigger",
            ))
        if self.view is not None:
            tasks.append(asyncio.create_task(
                run_periodic("view", self.view_interval, self.view.poll, stop, self.on_snapshot),
                name="view",
            ))
        if self.ingestor is not None:
            tasks.append(asyncio.create_task(self._run_ingest(stop), name="ingest"))

        logger.info(f"Orchestrator running: {', '.join(t.get_name() for t in tasks) or 'nothing'}")

        try:
            await stop.wait()
        finally:
            self._thread_stop.set()
            if tasks:
                _, pending = await asyncio.wait(tasks, timeout=self.shutdown_grace)
                for task in pending:
                    logger.warning(f"{task.get_name()} loop did not stop within {self.shutdown_grace}s; cancelling")
                    task.cancel()
            logger.info("Orchestrator stopped")

    async def run_until_signalled(self) -> None:
        """Run until SIGINT or SIGTERM."""
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError):
                # Windows event loops do not support signal handlers
                pass

        await self.run(stop)
