"""Sweepstake - round lifecycle orchestrator for a pooled-entry lottery contract."""

__version__ = "0.3.0"
