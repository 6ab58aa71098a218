"""Trigger coordinator: requests the round-ending transition when it is due.

Per-round state machine:

    Idle -> Evaluating -> Submitting -> {Confirmed, Rejected, Retryable} -> Idle

The local phase check only keeps redundant submissions rare. Correctness
under several uncoordinated coordinators comes from the contract itself,
which refuses a transition that is not (or no longer) eligible; that
refusal is an expected outcome here, not an error.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from .chain.client import LedgerClient, RejectedByLedger, TransientError
from .models.round import Phase, RoundState, RoundTiming
from .models.trigger import CoordinatorState, TickResult, TriggerAttempt, TriggerOutcome
from .timer import derive_timing, is_trigger_eligible

logger = logging.getLogger(__name__)

# Attempts in these outcomes block another submission for the same round
_OUTSTANDING = {TriggerOutcome.PENDING, TriggerOutcome.CONFIRMED}


class TriggerCoordinator:
    """Decides, once per tick, whether to submit the round transition.

    Attempts live only in memory. A fresh process starts Idle with no
    attempts and rebuilds its view from the contract on the first read.
    """

    def __init__(self, client: LedgerClient, clock: Callable[[], float] = time.time):
        """Initialize the coordinator.

        Args:
            client: Contract client used for reads and submission
            clock: Wall clock returning unix seconds
        """
        self.client = client
        self.clock = clock
        self.state = CoordinatorState.IDLE
        self.attempts: dict[int, TriggerAttempt] = {}
        self.last_round_id: Optional[int] = None

    def tick(self, force: bool = False) -> TickResult:
        """Run one evaluation against freshly read contract state.

        Args:
            force: Submit even when the local check says the round is not
                eligible, leaving the decision to the contract

        Returns:
            TickResult describing the transitions taken

        Raises:
            Exception: Only for unexpected client failures; ledger errors
                are handled here
        """
        result = TickResult()
        self._enter(result, CoordinatorState.EVALUATING)

        try:
            round_state = self.client.read_round_state()
        except TransientError as e:
            logger.warning(f"Round state read failed, retrying next tick: {e}")
            return self._skip(result, f"read failed: {e}")

        timing = derive_timing(round_state, int(self.clock()))
        result.timing = timing
        result.participant_count = round_state.participant_count
        if not self._reconcile(round_state, timing):
            return self._skip(result, "stale read")

        if not force:
            reason = self._ineligible_reason(round_state, timing)
            if reason is not None:
                logger.debug(f"Round {round_state.round_id}: nothing to do ({reason})")
                return self._skip(result, reason)

        return self._submit(round_state, result)

    def _ineligible_reason(self, round_state: RoundState, timing: RoundTiming) -> Optional[str]:
        if not is_trigger_eligible(round_state, timing):
            if timing.phase != Phase.EXPIRED:
                return f"phase {timing.phase.value}"
            return "no participants"
        attempt = self.attempts.get(round_state.round_id)
        if attempt is not None and attempt.outcome in _OUTSTANDING:
            return f"attempt already {attempt.outcome.value.lower()}"
        return None

    def _submit(self, round_state: RoundState, result: TickResult) -> TickResult:
        round_id = round_state.round_id
        submitted_at = datetime.fromtimestamp(self.clock(), timezone.utc)
        attempt = TriggerAttempt(round_id=round_id, submitted_at=submitted_at)
        self.attempts[round_id] = attempt
        result.attempt = attempt
        self._enter(result, CoordinatorState.SUBMITTING)

        logger.info(
            f"Round {round_id} expired with {round_state.participant_count} participant(s); "
            "requesting draw"
        )

        try:
            outcome = self.client.submit_round_transition()
        except RejectedByLedger as e:
            attempt.outcome = TriggerOutcome.REJECTED_BY_LEDGER
            attempt.reason = e.reason
            attempt.tx_hash = e.tx_hash
            # An empty round is the common race; the contract already guards it
            level = logging.DEBUG if "no players" in e.reason.lower() else logging.INFO
            logger.log(level, f"Draw request for round {round_id} refused by ledger: {e.reason}")
            self._enter(result, CoordinatorState.REJECTED)
        except TransientError as e:
            attempt.outcome = TriggerOutcome.TRANSIENT_ERROR
            attempt.tx_hash = e.tx_hash
            attempt.reason = str(e)
            if e.tx_hash:
                logger.warning(
                    f"Draw request {e.tx_hash} for round {round_id} unconfirmed: {e}; "
                    "next read of the round will settle it"
                )
            else:
                logger.warning(f"Draw request for round {round_id} failed, retrying next tick: {e}")
            self._enter(result, CoordinatorState.RETRYABLE)
        except Exception:
            attempt.outcome = TriggerOutcome.TRANSIENT_ERROR
            self.state = CoordinatorState.IDLE
            raise
        else:
            attempt.outcome = TriggerOutcome.CONFIRMED
            attempt.tx_hash = outcome.tx_hash
            logger.info(f"Draw request confirmed for round {round_id}: {outcome.tx_hash}")
            self._enter(result, CoordinatorState.CONFIRMED)

        self._enter(result, CoordinatorState.IDLE)
        return result

    def _reconcile(self, round_state: RoundState, timing: RoundTiming) -> bool:
        """Fold freshly read contract state into the local attempt records.

        Returns:
            False when the read is behind a round already seen
        """
        round_id = round_state.round_id

        if self.last_round_id is not None and round_id < self.last_round_id:
            logger.warning(f"Read round {round_id} behind last seen round {self.last_round_id}; endpoint lagging")
            return False

        if self.last_round_id is not None and round_id > self.last_round_id:
            logger.info(f"Round advanced: {self.last_round_id} -> {round_id}")
        self.last_round_id = round_id

        for old_round in [r for r in self.attempts if r < round_id]:
            attempt = self.attempts.pop(old_round)
            logger.debug(f"Round {old_round} resolved on ledger (local attempt {attempt.outcome.value})")

        # Once the contract reports the draw in flight it owns the outcome
        attempt = self.attempts.get(round_id)
        if attempt is not None and timing.phase == Phase.DRAWING:
            del self.attempts[round_id]
        return True

    def _enter(self, result: TickResult, state: CoordinatorState) -> None:
        self.state = state
        result.transitions.append(state)

    def _skip(self, result: TickResult, reason: str) -> TickResult:
        result.skipped_reason = reason
        self._enter(result, CoordinatorState.IDLE)
        return result
