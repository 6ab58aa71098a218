"""Remote state client interface for the lottery contract.

Defines the read / submit / subscribe surface the orchestrator depends on,
the typed failures it reports, and a deterministic in-memory fake.
Implementations never retry; callers own the retry policy.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Iterator, Optional

from ..models.events import DomainEvent, EventKind, SourcePosition
from ..models.round import RoundResult, RoundState
from ..models.trigger import TxOutcome


class LedgerError(Exception):
    """Base class for failures reported by a ledger client."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class TransientError(LedgerError):
    """Network or timeout failure; the next poll tick is the retry.

    tx_hash is set when a transition was sent but its receipt was not
    observed in time, so its outcome is still unknown.
    """


class RejectedByLedger(LedgerError):
    """The contract refused the request with a business-rule reason."""

    def __init__(self, reason: str, tx_hash: Optional[str] = None):
        super().__init__(f"Rejected by ledger: {reason}", tx_hash=tx_hash)
        self.reason = reason


class LedgerClient(ABC):
    """Abstract interface for the contract surface."""

    @abstractmethod
    def read_round_state(self) -> RoundState:
        """Read the current round.

        Raises:
            TransientError: If the endpoint could not be reached
        """
        pass

    @abstractmethod
    def submit_round_transition(self) -> TxOutcome:
        """Submit the round-ending transition and wait for its receipt.

        Raises:
            RejectedByLedger: If the contract refused the transition
            TransientError: If the outcome could not be established
        """
        pass

    @abstractmethod
    def subscribe_events(
        self,
        from_block: Optional[int] = None,
        stop: Optional[threading.Event] = None,
    ) -> Iterator[DomainEvent]:
        """Lazily yield contract events in ledger order.

        The sequence is unbounded; it ends only when `stop` is set.
        A disconnect surfaces as TransientError from the iterator, after
        which the caller may subscribe again (events may be redelivered).

        Args:
            from_block: First block to deliver (inclusive)
            stop: Event that ends the subscription when set
        """
        pass

    def close(self) -> None:
        """Release network resources."""
        return None


class FakeLedgerClient(LedgerClient):
    """Deterministic in-memory contract for tests and dry runs.

    Models the contract's gating: the transition is refused while the
    round is empty, still active, or already drawing.
    """

    def __init__(
        self,
        *,
        round_id: int = 1,
        start_time: int = 0,
        duration: int = 600,
        participant_count: int = 0,
        pool_balance: int = 0,
        drawing_in_progress: bool = False,
        last_result: Optional[RoundResult] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.state = RoundState(
            round_id=round_id,
            start_time=start_time,
            duration=duration,
            participant_count=participant_count,
            pool_balance=pool_balance,
            drawing_in_progress=drawing_in_progress,
            last_result=last_result,
        )
        self.clock = clock
        self.events: list[DomainEvent] = []
        self.read_calls = 0
        self.submit_calls = 0
        self.subscriptions = 0
        self.read_error: Optional[LedgerError] = None
        self.submit_error: Optional[LedgerError] = None
        self.disconnect_after: Optional[int] = None
        self.drained = threading.Event()
        self._tx_counter = 0
        self._lock = threading.Lock()

    def update(self, **changes) -> RoundState:
        """Replace fields of the current round state."""
        self.state = self.state.model_copy(update=changes)
        return self.state

    def emit(
        self,
        kind: EventKind,
        round_id: int,
        block_number: int,
        log_index: int = 0,
        **payload,
    ) -> DomainEvent:
        """Append an event to the fake's log."""
        event = DomainEvent(
            kind=kind,
            round_id=round_id,
            payload=payload,
            source=SourcePosition(block_number=block_number, log_index=log_index),
        )
        self.events.append(event)
        return event

    def read_round_state(self) -> RoundState:
        with self._lock:
            self.read_calls += 1
        if self.read_error is not None:
            raise self.read_error
        return self.state

    def submit_round_transition(self) -> TxOutcome:
        with self._lock:
            self.submit_calls += 1
            self._tx_counter += 1
            tx_hash = f"0x{self._tx_counter:064x}"
        if self.submit_error is not None:
            raise self.submit_error

        state = self.state
        if state.drawing_in_progress:
            raise RejectedByLedger("Drawing already in progress")
        if state.participant_count == 0:
            raise RejectedByLedger("No players")
        if state.deadline is None or self.clock() < state.deadline:
            raise RejectedByLedger("Round still active")

        self.update(drawing_in_progress=True)
        return TxOutcome(tx_hash=tx_hash, block_number=len(self.events) + 1)

    def subscribe_events(
        self,
        from_block: Optional[int] = None,
        stop: Optional[threading.Event] = None,
    ) -> Iterator[DomainEvent]:
        self.subscriptions += 1
        delivered = 0
        for event in list(self.events):
            if from_block is not None and event.source.block_number < from_block:
                continue
            if self.disconnect_after is not None and delivered >= self.disconnect_after:
                self.disconnect_after = None
                raise TransientError("Event subscription dropped")
            delivered += 1
            yield event

        self.drained.set()
        if stop is not None:
            stop.wait()
