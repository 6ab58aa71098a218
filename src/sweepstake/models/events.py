"""Pydantic models for contract events and their persisted history projection."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    """Domain event kinds emitted by the contract."""

    ENTRY_RECORDED = "EntryRecorded"
    ROUND_RESOLVED = "RoundResolved"


class SourcePosition(BaseModel):
    """Ledger-assigned ordering key for an event log (block + log index)."""

    block_number: int = Field(..., ge=0)
    log_index: int = Field(..., ge=0)
    tx_hash: str | None = Field(None, description="Transaction that emitted the log")

    model_config = {"frozen": True}

    @property
    def key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


class DomainEvent(BaseModel):
    """Immutable fact emitted by the contract.

    EntryRecorded payload: participant, numbers.
    RoundResolved payload: numbers, prize (distributed amount in wei).
    """

    kind: EventKind
    round_id: int = Field(..., ge=0)
    payload: dict[str, Any] = Field(default_factory=dict)
    source: SourcePosition

    model_config = {"frozen": True}

    @property
    def dedup_key(self) -> tuple[str, int, int]:
        return (self.kind.value, self.source.block_number, self.source.log_index)


class HistoryRecord(BaseModel):
    """Persisted projection of a DomainEvent.

    Written once as a flat JSON line per event kind; never rewritten.
    The seq field is assigned by the store and gives insertion order
    across kinds.
    """

    kind: EventKind
    round_id: int
    block_number: int
    log_index: int
    tx_hash: str | None = None
    participant: str | None = None
    numbers: list[int] = Field(default_factory=list)
    prize: str | None = Field(None, description="Distributed amount in wei, as a decimal string")
    ingested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    seq: int | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_event(cls, event: DomainEvent, ingested_at: datetime | None = None) -> "HistoryRecord":
        """Normalize a DomainEvent into its flat history form."""
        payload = event.payload
        prize = payload.get("prize")
        return cls(
            kind=event.kind,
            round_id=event.round_id,
            block_number=event.source.block_number,
            log_index=event.source.log_index,
            tx_hash=event.source.tx_hash,
            participant=payload.get("participant"),
            numbers=[int(n) for n in payload.get("numbers", [])],
            prize=str(prize) if prize is not None else None,
            ingested_at=ingested_at or datetime.now(timezone.utc),
        )

    @property
    def dedup_key(self) -> tuple[str, int, int]:
        return (self.kind.value, self.block_number, self.log_index)
