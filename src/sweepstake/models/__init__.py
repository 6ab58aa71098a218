"""Pydantic data models for the Sweepstake orchestrator."""

from .events import DomainEvent, EventKind, HistoryRecord, SourcePosition
from .round import Phase, RoundResult, RoundState, RoundTiming
from .trigger import CoordinatorState, TickResult, TriggerAttempt, TriggerOutcome, TxOutcome
from .view import ViewSnapshot

__all__ = [
    "CoordinatorState",
    "DomainEvent",
    "EventKind",
    "HistoryRecord",
    "Phase",
    "RoundResult",
    "RoundState",
    "RoundTiming",
    "SourcePosition",
    "TickResult",
    "TriggerAttempt",
    "TriggerOutcome",
    "TxOutcome",
    "ViewSnapshot",
]
