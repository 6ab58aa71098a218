"""Round timer: derives phase and remaining time from contract state.

Every observer runs the same pure derivation over a freshly read
RoundState, so two pollers holding the same snapshot always agree.
Nothing here caches a deadline between polls.
"""

import time
from decimal import Decimal
from typing import Optional

from .models.round import Phase, RoundState, RoundTiming

PHASE_LABELS = {
    Phase.NOT_STARTED: "READY TO START",
    Phase.EXPIRED: "TIME EXPIRED",
    Phase.DRAWING: "DRAWING...",
}


def derive_timing(state: RoundState, now: Optional[int] = None) -> RoundTiming:
    """Derive the round phase at instant `now`.

    Rules:
    - start_time == 0: NotStarted, remaining undefined
    - now < start_time + duration: Active, remaining = deadline - now
    - otherwise: Expired, remaining = 0
    - drawing_in_progress overrides the phase to Drawing

    Args:
        state: Round state as read from the contract
        now: Unix seconds; defaults to the current wall clock

    Returns:
        RoundTiming for the snapshot
    """
    if now is None:
        now = int(time.time())

    deadline = state.deadline
    if deadline is None:
        phase = Phase.NOT_STARTED
        remaining = None
    elif now < deadline:
        phase = Phase.ACTIVE
        remaining = deadline - now
    else:
        phase = Phase.EXPIRED
        remaining = 0

    if state.drawing_in_progress:
        phase = Phase.DRAWING

    return RoundTiming(
        round_id=state.round_id,
        phase=phase,
        deadline=deadline,
        remaining=remaining,
        observed_at=now,
    )


def is_trigger_eligible(state: RoundState, timing: RoundTiming) -> bool:
    """Whether the round-ending transition is worth submitting."""
    return timing.phase == Phase.EXPIRED and state.participant_count > 0


def format_remaining(seconds: int) -> str:
    """Format a countdown as '<m>m <s>s'."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}m {seconds % 60}s"


def timer_label(phase: Optional[Phase], remaining: Optional[int] = None) -> str:
    """Human label for the round timer, e.g. '4m 10s' or 'TIME EXPIRED'.

    A phase of None (no successful read yet) is labeled UNKNOWN.
    """
    if phase is None:
        return "UNKNOWN"
    if phase == Phase.ACTIVE and remaining is not None:
        return format_remaining(remaining)
    return PHASE_LABELS[phase]


def format_units(value: int, decimals: int = 18) -> str:
    """Render a smallest-unit integer as a decimal string without float rounding.

    Examples:
        format_units(1_500_000_000_000_000) -> '0.0015'
        format_units(2 * 10**18) -> '2.0'
    """
    quantized = Decimal(int(value)).scaleb(-decimals)
    text = format(quantized, "f")
    if "." in text:
        text = text.rstrip("0")
        if text.endswith("."):
            text += "0"
    else:
        text += ".0"
    return text
