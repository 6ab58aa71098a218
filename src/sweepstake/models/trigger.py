"""Models for the trigger coordinator's own actions."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .round import RoundTiming


class TriggerOutcome(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    REJECTED_BY_LEDGER = "RejectedByLedger"
    TRANSIENT_ERROR = "TransientError"


class CoordinatorState(str, Enum):
    """States of the per-round trigger state machine."""

    IDLE = "Idle"
    EVALUATING = "Evaluating"
    SUBMITTING = "Submitting"
    CONFIRMED = "Confirmed"
    REJECTED = "Rejected"
    RETRYABLE = "Retryable"


class TxOutcome(BaseModel):
    """Receipt summary of an accepted transition."""

    tx_hash: str
    block_number: int | None = None

    model_config = {"frozen": True}


class TriggerAttempt(BaseModel):
    """In-memory record of one submission; never persisted."""

    round_id: int
    submitted_at: datetime
    outcome: TriggerOutcome = TriggerOutcome.PENDING
    tx_hash: str | None = None
    reason: str | None = None


class TickResult(BaseModel):
    """What one coordinator tick observed and did.

    transitions lists every state the tick passed through, from
    Evaluating back to Idle.
    """

    transitions: list[CoordinatorState] = Field(default_factory=list)
    timing: RoundTiming | None = None
    participant_count: int | None = None
    attempt: TriggerAttempt | None = None
    skipped_reason: str | None = None

    @property
    def submitted(self) -> bool:
        return CoordinatorState.SUBMITTING in self.transitions
