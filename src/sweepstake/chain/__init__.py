"""Clients for the lottery contract."""

from .client import FakeLedgerClient, LedgerClient, LedgerError, RejectedByLedger, TransientError

__all__ = [
    "FakeLedgerClient",
    "LedgerClient",
    "LedgerError",
    "RejectedByLedger",
    "TransientError",
]
