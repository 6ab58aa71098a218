"""Append-only history store for ingested contract events."""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..models.events import EventKind, HistoryRecord
from ..paths import StatePaths

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a history record could not be made durable."""

    def __init__(self, message: str, path: Path):
        super().__init__(message)
        self.path = path


def _fsync_dir(path: Path) -> None:
    # Makes a newly created file's directory entry durable (no-op where unsupported).
    try:
        fd = os.open(str(path), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


class HistoryStore:
    """Append-only, idempotent history store.

    Writes one JSONL file per event kind under <state>/history/.
    Never truncates or rewrites; only appends. Appending a record whose
    (kind, block_number, log_index) is already stored is a no-op.

    Every append is flushed and fsynced before returning. Appends are
    serialized by a lock; readers never take the lock for longer than
    it takes to read the current sequence number.
    """

    def __init__(self, paths: StatePaths):
        """Initialize the store and rebuild the dedup index from disk.

        Args:
            paths: State paths for the history files
        """
        self.paths = paths
        self._lock = threading.Lock()
        self._keys: set[tuple[str, int, int]] = set()
        self._seq = 0
        self._max_block: Optional[int] = None
        self._needs_newline: dict[Path, bool] = {}
        self._load_index()

    def _load_index(self) -> None:
        for kind in EventKind:
            path = self.paths.history_file(kind)
            if path.exists():
                data = path.read_bytes()
                # A torn final line from a crash must not swallow the next append
                self._needs_newline[path] = bool(data) and not data.endswith(b"\n")
            for record in _read_history_file(path):
                self._index(record)
        if self._keys:
            logger.info(f"Loaded {len(self._keys)} history record(s), last seq {self._seq}")

    def _index(self, record: HistoryRecord) -> None:
        self._keys.add(record.dedup_key)
        if record.seq is not None and record.seq > self._seq:
            self._seq = record.seq
        if self._max_block is None or record.block_number > self._max_block:
            self._max_block = record.block_number

    def append(self, record: HistoryRecord) -> bool:
        """Append a record unless its dedup key is already stored.

        Args:
            record: Record to persist (its seq is assigned here)

        Returns:
            True if the record was written, False if it was a duplicate

        Raises:
            PersistenceError: If the write or fsync failed
        """
        with self._lock:
            if record.dedup_key in self._keys:
                return False

            stored = record.model_copy(update={"seq": self._seq + 1})
            path = self.paths.history_file(record.kind)
            created = not path.exists()

            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, "a", encoding="utf-8") as f:
                    if self._needs_newline.get(path):
                        f.write("\n")
                    f.write(stored.model_dump_json() + "\n")
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                # Part of the line may have landed; terminate it before the next write
                self._needs_newline[path] = True
                raise PersistenceError(f"Failed to append history record to {path}: {e}", path) from e

            if created:
                _fsync_dir(path.parent)

            self._needs_newline[path] = False
            self._index(stored)
            return True

    def contains(self, record: HistoryRecord) -> bool:
        return record.dedup_key in self._keys

    def read_all(self, kind: Optional[EventKind] = None) -> list[HistoryRecord]:
        """Read every stored record in insertion order.

        Records appended after the read began may or may not be included,
        but the result is always a prefix of the insertion order.

        Args:
            kind: Restrict to one event kind

        Returns:
            List of HistoryRecord objects ordered by seq
        """
        with self._lock:
            high = self._seq

        kinds = [kind] if kind is not None else list(EventKind)
        records: list[HistoryRecord] = []
        for k in kinds:
            records.extend(
                r for r in _read_history_file(self.paths.history_file(k))
                if r.seq is not None and r.seq <= high
            )
        records.sort(key=lambda r: r.seq)
        return records

    def tail(self, n: int = 20, kind: Optional[EventKind] = None) -> list[HistoryRecord]:
        """Read the last N records."""
        records = self.read_all(kind)
        return records[-n:] if n > 0 else []

    def resume_block(self) -> Optional[int]:
        """Highest block with a stored record, or None for an empty store."""
        return self._max_block

    def __len__(self) -> int:
        return len(self._keys)


def _read_history_file(path: Path) -> list[HistoryRecord]:
    """Parse a history JSONL file.

    Robust parsing: skips malformed lines and a trailing line that was
    not terminated (an append in progress or torn by a crash). Duplicate
    keys keep their first occurrence.
    """
    if not path.exists():
        return []

    with open(path, "r", encoding="utf-8") as f:
        lines = f.readlines()

    records: list[HistoryRecord] = []
    seen: set[tuple[str, int, int]] = set()
    malformed_count = 0

    for line in lines:
        if not line.endswith("\n"):
            continue
        line = line.strip()
        if not line:
            continue

        try:
            record = HistoryRecord(**json.loads(line))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            malformed_count += 1
            logger.debug(f"Skipping malformed history line in {path}: {e}")
            continue

        if record.dedup_key in seen:
            continue
        seen.add(record.dedup_key)
        records.append(record)

    if malformed_count > 0:
        logger.warning(f"Skipped {malformed_count} malformed line(s) in {path}")

    return records
