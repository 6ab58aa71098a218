"""Pydantic models for round state read from the contract."""

from enum import Enum

from pydantic import BaseModel, Field


class Phase(str, Enum):
    """Derived lifecycle position of the current round."""

    NOT_STARTED = "NotStarted"
    ACTIVE = "Active"
    EXPIRED = "Expired"
    DRAWING = "Drawing"


class RoundResult(BaseModel):
    """Outcome of the most recently resolved round.

    Read from the contract's winning numbers and last-winner surface.
    """

    round_id: int = Field(..., ge=0, description="Resolved round identifier")
    winning_numbers: list[int] = Field(default_factory=list, description="Per-index winning values")
    recipient: str | None = Field(None, description="Last recipient address, if any")

    model_config = {"frozen": True}


class RoundState(BaseModel):
    """Snapshot of the contract's current round.

    The contract owns this state; the orchestrator only ever reads it.
    A start_time of 0 means the round has not started yet.
    """

    round_id: int = Field(..., ge=0, description="Current round identifier")
    start_time: int = Field(..., ge=0, description="Round start (unix seconds), 0 if not started")
    duration: int = Field(..., gt=0, description="Fixed round duration in seconds")
    participant_count: int = Field(0, ge=0, description="Entries in the current round")
    pool_balance: int = Field(0, ge=0, description="Pool balance in the smallest unit (wei)")
    drawing_in_progress: bool = Field(False, description="Transition is mid-flight on the contract")
    last_result: RoundResult | None = Field(None, description="Most recently resolved round, if any")

    model_config = {"frozen": True}

    @property
    def deadline(self) -> int | None:
        """Unix time at which the round stops accepting entries."""
        if self.start_time == 0:
            return None
        return self.start_time + self.duration


class RoundTiming(BaseModel):
    """Phase and remaining time derived from a RoundState at a given instant."""

    round_id: int
    phase: Phase
    deadline: int | None = None
    remaining: int | None = Field(None, description="Seconds until deadline; None when not started")
    observed_at: int = Field(..., description="Wall-clock instant used for the derivation")

    model_config = {"frozen": True}
