"""Tests for the append-only history store."""

import json
import threading
from unittest.mock import patch

import pytest

from sweepstake.history.store import HistoryStore, PersistenceError
from sweepstake.models.events import DomainEvent, EventKind, HistoryRecord, SourcePosition


def _entry(block: int, log_index: int = 0, round_id: int = 1, player: str = "0xabc") -> HistoryRecord:
    return HistoryRecord.from_event(
        DomainEvent(
            kind=EventKind.ENTRY_RECORDED,
            round_id=round_id,
            payload={"participant": player, "numbers": [1, 2, 3]},
            source=SourcePosition(block_number=block, log_index=log_index),
        )
    )


def _resolved(block: int, log_index: int = 0, round_id: int = 1) -> HistoryRecord:
    return HistoryRecord.from_event(
        DomainEvent(
            kind=EventKind.ROUND_RESOLVED,
            round_id=round_id,
            payload={"numbers": [4, 5, 6], "prize": 3 * 10**18},
            source=SourcePosition(block_number=block, log_index=log_index),
        )
    )


def test_append_creates_file(store, state_paths):
    """Appending creates the per-kind history file."""
    assert not state_paths.entries_file.exists()

    assert store.append(_entry(10)) is True

    assert state_paths.entries_file.exists()
    assert not state_paths.resolutions_file.exists()
    lines = state_paths.entries_file.read_text().splitlines()
    assert len(lines) == 1
    data = json.loads(lines[0])
    assert data["kind"] == "EntryRecorded"
    assert data["block_number"] == 10
    assert data["seq"] == 1


def test_append_is_idempotent_by_source_position(store, state_paths):
    """Two records with the same kind and source position store once."""
    assert store.append(_entry(10, 2)) is True
    assert store.append(_entry(10, 2, player="0xother")) is False

    assert len(store) == 1
    assert len(state_paths.entries_file.read_text().splitlines()) == 1
    assert store.read_all()[0].participant == "0xabc"


def test_same_position_different_kind_is_distinct(store):
    """The dedup key includes the event kind."""
    assert store.append(_entry(10, 0)) is True
    assert store.append(_resolved(10, 0)) is True
    assert len(store) == 2


def test_read_all_orders_across_kinds(store):
    """read_all returns insertion order across both collections."""
    store.append(_entry(10))
    store.append(_resolved(11))
    store.append(_entry(12))

    records = store.read_all()
    assert [r.seq for r in records] == [1, 2, 3]
    assert [r.kind for r in records] == [
        EventKind.ENTRY_RECORDED,
        EventKind.ROUND_RESOLVED,
        EventKind.ENTRY_RECORDED,
    ]
    assert [r.block_number for r in store.read_all(EventKind.ENTRY_RECORDED)] == [10, 12]


def test_tail_returns_last_n(store):
    for block in range(1, 11):
        store.append(_entry(block))

    tail = store.tail(3)
    assert [r.block_number for r in tail] == [8, 9, 10]
    assert store.tail(0) == []


def test_reopen_rebuilds_index(store, state_paths):
    """A restarted store still refuses records written before the restart."""
    store.append(_entry(10))
    store.append(_resolved(11))

    reopened = HistoryStore(state_paths)

    assert len(reopened) == 2
    assert reopened.append(_entry(10)) is False
    assert reopened.resume_block() == 11
    assert reopened.append(_entry(12)) is True
    assert reopened.read_all()[-1].seq == 3


def test_resume_block_empty_store(store):
    assert store.resume_block() is None


def test_torn_last_line_is_ignored_and_terminated(state_paths):
    """A partial trailing line from a crash neither loads nor corrupts the next append."""
    good = _entry(10).model_copy(update={"seq": 1})
    state_paths.entries_file.write_text(good.model_dump_json() + "\n" + '{"kind": "EntryRec')

    store = HistoryStore(state_paths)
    assert len(store) == 1

    assert store.append(_entry(11)) is True

    reopened = HistoryStore(state_paths)
    assert [r.block_number for r in reopened.read_all()] == [10, 11]


def test_malformed_lines_are_skipped(state_paths):
    """Garbage lines are skipped with a warning instead of failing the load."""
    good = _entry(10).model_copy(update={"seq": 1})
    state_paths.entries_file.write_text("not json\n" + good.model_dump_json() + "\n" + '{"kind": 5}\n')

    store = HistoryStore(state_paths)

    assert len(store) == 1
    assert store.read_all()[0].block_number == 10


def test_write_failure_raises_persistence_error(store, state_paths):
    """An OSError during append surfaces as PersistenceError and stores nothing."""
    with patch("sweepstake.history.store.os.fsync", side_effect=OSError("disk full")):
        with pytest.raises(PersistenceError) as exc_info:
            store.append(_entry(10))

    assert exc_info.value.path == state_paths.entries_file
    assert not store.contains(_entry(10))

    # The retry succeeds and the record is readable exactly once
    assert store.append(_entry(10)) is True
    assert [r.block_number for r in HistoryStore(state_paths).read_all()] == [10]


def test_concurrent_reader_sees_prefix(store):
    """Reads taken while appends are in flight are always a prefix of insertion order."""
    stop = threading.Event()
    snapshots = []

    def reader():
        while not stop.is_set():
            snapshots.append([r.block_number for r in store.read_all()])

    thread = threading.Thread(target=reader)
    thread.start()
    try:
        for block in range(1, 51):
            store.append(_entry(block) if block % 2 else _resolved(block))
    finally:
        stop.set()
        thread.join()

    full = list(range(1, 51))
    for snapshot in snapshots:
        assert snapshot == full[: len(snapshot)]
