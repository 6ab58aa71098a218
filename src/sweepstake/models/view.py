"""Pydantic model for the presentation snapshot."""

from datetime import datetime

from pydantic import BaseModel, Field

from .round import Phase, RoundResult


class ViewSnapshot(BaseModel):
    """Consistent read-side view of the current round.

    phase is None only before the first successful poll; a failed poll
    keeps the previous values and sets stale/last_error instead.
    """

    round_id: int | None = None
    phase: Phase | None = None
    deadline: int | None = None
    remaining: int | None = None
    pool_balance: int | None = None
    participant_count: int | None = None
    last_resolved_round_id: int | None = None
    last_result: RoundResult | None = None
    refreshed_at: datetime | None = Field(None, description="Time of the last successful poll")
    stale: bool = Field(False, description="Last poll failed; values are from refreshed_at")
    last_error: str | None = None

    model_config = {"frozen": True}
