"""Event ingestion: contract event stream -> history store (resumable, idempotent)."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .chain.client import LedgerClient, TransientError
from .history.store import HistoryStore, PersistenceError
from .models.events import DomainEvent, EventKind, HistoryRecord
from .timer import format_units

logger = logging.getLogger(__name__)


@dataclass
class IngestSummary:
    delivered: int = 0
    written: int = 0
    duplicates: int = 0
    subscriptions: int = 0
    persistence_retries: int = 0
    last_position: Optional[tuple[int, int]] = None
    errors: list[str] = field(default_factory=list)


class EventIngestor:
    """Consumes the contract event subscription into the history store.

    Deduplication is the store's idempotent append: a redelivered event
    is a no-op append and triggers none of the side effects of a new one.
    A record that fails to persist is retried in place; the ingestor
    never skips past it.
    """

    def __init__(
        self,
        client: LedgerClient,
        store: HistoryStore,
        *,
        retry_delay: float = 1.0,
        resubscribe_delay: float = 5.0,
    ):
        """Initialize the ingestor.

        Args:
            client: Contract client providing the event subscription
            store: History store receiving the records
            retry_delay: Seconds between attempts to persist a failed record
            resubscribe_delay: Seconds to wait after a dropped subscription
        """
        self.client = client
        self.store = store
        self.retry_delay = retry_delay
        self.resubscribe_delay = resubscribe_delay
        self.summary = IngestSummary()

    def ingest_event(self, event: DomainEvent, stop: Optional[threading.Event] = None) -> bool:
        """Persist one event, retrying until it is durable.

        Args:
            event: Event as delivered by the subscription
            stop: When set during a persistence retry, give up and re-raise

        Returns:
            True if the event was new, False if it was already recorded

        Raises:
            PersistenceError: Only if `stop` was set while the record was unwritten
        """
        self.summary.delivered += 1
        record = HistoryRecord.from_event(event)

        while True:
            try:
                written = self.store.append(record)
                break
            except PersistenceError as e:
                self.summary.persistence_retries += 1
                logger.warning(f"Could not persist {event.kind.value} at {event.source.key}: {e}; retrying")
                if stop is None:
                    time.sleep(self.retry_delay)
                elif stop.wait(self.retry_delay):
                    raise

        self.summary.last_position = event.source.key
        if not written:
            self.summary.duplicates += 1
            logger.debug(f"Skipping already recorded {event.kind.value} at {event.source.key}")
            return False

        self.summary.written += 1
        _announce(event)
        return True

    def consume(self, events: Iterable[DomainEvent], stop: Optional[threading.Event] = None) -> int:
        """Ingest events in delivery order until the iterable ends or `stop` is set.

        Returns:
            Number of new records written
        """
        written = 0
        for event in events:
            if self.ingest_event(event, stop):
                written += 1
            if stop is not None and stop.is_set():
                break
        return written

    def run(self, stop: threading.Event) -> IngestSummary:
        """Subscribe and ingest until `stop` is set, resubscribing on disconnect.

        Each subscription resumes from the highest block already stored
        (inclusive); the overlap is absorbed by the idempotent append.
        """
        while not stop.is_set():
            from_block = self.store.resume_block()
            self.summary.subscriptions += 1
            logger.info(
                "Subscribing to contract events"
                + (f" from block {from_block}" if from_block is not None else "")
            )

            try:
                self.consume(self.client.subscribe_events(from_block=from_block, stop=stop), stop)
            except TransientError as e:
                self.summary.errors.append(str(e))
                logger.warning(f"Event subscription dropped: {e}; resubscribing")
                stop.wait(self.resubscribe_delay)
            except PersistenceError as e:
                self.summary.errors.append(str(e))
                logger.warning(f"Stopping with an unpersisted record; it will be redelivered on restart: {e}")
                break

        return self.summary


def _announce(event: DomainEvent) -> None:
    """Log a newly recorded event."""
    payload = event.payload
    numbers = ", ".join(str(n) for n in payload.get("numbers", []))

    if event.kind == EventKind.ENTRY_RECORDED:
        logger.info(f"[Round {event.round_id}] Entry: {payload.get('participant')} | Numbers: [{numbers}]")
    else:
        prize = payload.get("prize")
        prize_str = format_units(int(prize)) if prize is not None else "?"
        logger.info(
            f"Draw complete - round {event.round_id}: winning numbers [{numbers}], "
            f"total prize distributed {prize_str} ETH"
        )
