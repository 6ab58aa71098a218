"""Durable, append-only event history."""

from .store import HistoryStore, PersistenceError

__all__ = ["HistoryStore", "PersistenceError"]
