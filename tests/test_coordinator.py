"""Tests for the trigger coordinator state machine."""

import logging
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from sweepstake.chain.client import FakeLedgerClient, RejectedByLedger, TransientError
from sweepstake.coordinator import TriggerCoordinator
from sweepstake.models.round import Phase
from sweepstake.models.trigger import CoordinatorState, TriggerOutcome

S = CoordinatorState


def test_no_action_for_empty_expired_round(ledger, clock):
    """Expired with zero participants: no submission this tick."""
    clock.now = 1700
    coordinator = TriggerCoordinator(ledger, clock=clock)

    result = coordinator.tick()

    assert result.timing.phase == Phase.EXPIRED
    assert not result.submitted
    assert result.skipped_reason == "no participants"
    assert ledger.submit_calls == 0
    assert coordinator.state == S.IDLE


def test_rejection_returns_to_idle(ledger, clock):
    """A ledger refusal is an expected outcome, not an error."""
    clock.now = 1700
    ledger.update(participant_count=3)
    ledger.submit_error = RejectedByLedger("already resolved")
    coordinator = TriggerCoordinator(ledger, clock=clock)

    result = coordinator.tick()

    assert result.transitions == [S.EVALUATING, S.SUBMITTING, S.REJECTED, S.IDLE]
    assert result.attempt.outcome == TriggerOutcome.REJECTED_BY_LEDGER
    assert result.attempt.reason == "already resolved"
    assert coordinator.state == S.IDLE


def test_never_submits_when_ineligible(clock):
    """No submission for any phase other than Expired, or for an empty round."""
    cases = [
        dict(start_time=0, participant_count=5),
        dict(start_time=1000, participant_count=5),
        dict(start_time=1000, participant_count=0),
        dict(start_time=500, participant_count=0),
        dict(start_time=500, participant_count=5, drawing_in_progress=True),
    ]
    clock.now = 1200

    for fields in cases:
        ledger = FakeLedgerClient(round_id=1, duration=600, clock=clock, **fields)
        result = TriggerCoordinator(ledger, clock=clock).tick()
        assert not result.submitted, fields
        assert ledger.submit_calls == 0, fields


def test_confirmed_submission(ledger, clock):
    clock.now = 1700
    ledger.update(participant_count=2)
    coordinator = TriggerCoordinator(ledger, clock=clock)

    result = coordinator.tick()

    assert result.transitions == [S.EVALUATING, S.SUBMITTING, S.CONFIRMED, S.IDLE]
    assert result.attempt.outcome == TriggerOutcome.CONFIRMED
    assert result.attempt.tx_hash.startswith("0x")
    assert ledger.state.drawing_in_progress


def test_confirmed_attempt_blocks_resubmission(clock):
    """After a confirmed submission the same round is not submitted again."""
    clock.now = 1700
    client = Mock()
    client.read_round_state.return_value = FakeLedgerClient(
        round_id=4, start_time=1000, duration=600, participant_count=2
    ).state
    client.submit_round_transition.return_value = Mock(tx_hash="0x01")
    coordinator = TriggerCoordinator(client, clock=clock)

    coordinator.tick()
    second = coordinator.tick()

    assert client.submit_round_transition.call_count == 1
    assert second.skipped_reason == "attempt already confirmed"


def test_transient_submit_is_retried_next_tick(ledger, clock):
    """A transient failure leaves the round eligible for the next tick."""
    clock.now = 1700
    ledger.update(participant_count=2)
    ledger.submit_error = TransientError("connection reset")
    coordinator = TriggerCoordinator(ledger, clock=clock)

    first = coordinator.tick()
    assert first.transitions == [S.EVALUATING, S.SUBMITTING, S.RETRYABLE, S.IDLE]
    assert first.attempt.outcome == TriggerOutcome.TRANSIENT_ERROR

    ledger.submit_error = None
    second = coordinator.tick()
    assert second.attempt.outcome == TriggerOutcome.CONFIRMED
    assert ledger.submit_calls == 2


def test_unobserved_receipt_keeps_tx_hash(ledger, clock):
    clock.now = 1700
    ledger.update(participant_count=2)
    ledger.submit_error = TransientError("receipt timeout", tx_hash="0xdead")

    result = TriggerCoordinator(ledger, clock=clock).tick()

    assert result.attempt.tx_hash == "0xdead"
    assert result.attempt.outcome == TriggerOutcome.TRANSIENT_ERROR


def test_read_failure_skips_tick(ledger, clock):
    """A failed read never submits and never raises."""
    clock.now = 1700
    ledger.update(participant_count=2)
    ledger.read_error = TransientError("timeout")
    coordinator = TriggerCoordinator(ledger, clock=clock)

    result = coordinator.tick()

    assert result.transitions == [S.EVALUATING, S.IDLE]
    assert result.timing is None
    assert ledger.submit_calls == 0


def test_drawing_and_round_advance_clear_attempts(ledger, clock):
    """Attempts for a round are dropped once the contract takes over or moves on."""
    clock.now = 1700
    ledger.update(participant_count=2)
    coordinator = TriggerCoordinator(ledger, clock=clock)

    coordinator.tick()
    assert 1 in coordinator.attempts

    # Contract now reports Drawing
    result = coordinator.tick()
    assert result.timing.phase == Phase.DRAWING
    assert coordinator.attempts == {}

    ledger.update(round_id=2, start_time=0, participant_count=0, drawing_in_progress=False)
    coordinator.tick()
    assert coordinator.last_round_id == 2


def test_stale_round_does_not_regress(ledger, clock, caplog):
    """A read behind the last seen round is logged and ignored for reconciliation."""
    clock.now = 1200
    coordinator = TriggerCoordinator(ledger, clock=clock)
    ledger.update(round_id=5)
    coordinator.tick()

    ledger.update(round_id=4)
    with caplog.at_level(logging.WARNING, logger="sweepstake.coordinator"):
        coordinator.tick()

    assert coordinator.last_round_id == 5
    assert any("lagging" in r.getMessage() for r in caplog.records)


def test_lagging_read_never_submits(ledger, clock):
    """An expired round behind the last seen round is skipped, not triggered."""
    clock.now = 1200
    coordinator = TriggerCoordinator(ledger, clock=clock)
    ledger.update(round_id=5)
    coordinator.tick()

    clock.now = 1700
    ledger.update(round_id=4, participant_count=3)
    result = coordinator.tick()

    assert result.transitions == [S.EVALUATING, S.IDLE]
    assert result.skipped_reason == "stale read"
    assert not result.submitted
    assert ledger.submit_calls == 0


def test_attempt_time_comes_from_clock(ledger, clock):
    clock.now = 1700
    ledger.update(participant_count=3)

    result = TriggerCoordinator(ledger, clock=clock).tick()

    assert result.attempt.submitted_at == datetime.fromtimestamp(1700, timezone.utc)


def test_force_leaves_decision_to_ledger(ledger, clock):
    """force submits an Active round; the contract refuses it."""
    clock.now = 1200
    ledger.update(participant_count=2)

    result = TriggerCoordinator(ledger, clock=clock).tick(force=True)

    assert result.submitted
    assert result.attempt.outcome == TriggerOutcome.REJECTED_BY_LEDGER
    assert result.attempt.reason == "Round still active"


def test_no_players_rejection_logs_at_debug(ledger, clock, caplog):
    clock.now = 1700

    with caplog.at_level(logging.DEBUG, logger="sweepstake.coordinator"):
        TriggerCoordinator(ledger, clock=clock).tick(force=True)

    refusals = [r for r in caplog.records if "refused" in r.getMessage()]
    assert len(refusals) == 1
    assert refusals[0].levelno == logging.DEBUG


def test_unexpected_error_propagates_and_resets(ledger, clock):
    clock.now = 1700
    ledger.update(participant_count=2)
    ledger.submit_error = None
    coordinator = TriggerCoordinator(ledger, clock=clock)
    ledger.submit_round_transition = Mock(side_effect=RuntimeError("boom"))

    with pytest.raises(RuntimeError):
        coordinator.tick()

    assert coordinator.state == S.IDLE
    assert coordinator.attempts[1].outcome == TriggerOutcome.TRANSIENT_ERROR
