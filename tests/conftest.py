"""Pytest fixtures for Sweepstake orchestrator tests."""

import pytest

from sweepstake.chain.client import FakeLedgerClient
from sweepstake.config import OrchestratorConfig
from sweepstake.history.store import HistoryStore
from sweepstake.paths import StatePaths


class FakeClock:
    """Settable wall clock (unix seconds)."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_state(tmp_path):
    """Create a temporary state directory for testing.

    Args:
        tmp_path: pytest's built-in temporary directory fixture

    Returns:
        Path to temporary state root
    """
    state_root = tmp_path / "state"
    state_root.mkdir()
    return state_root


@pytest.fixture
def state_config(temp_state):
    """OrchestratorConfig pointing to the temporary state directory."""
    return OrchestratorConfig(state_dir=temp_state)


@pytest.fixture
def state_paths(state_config):
    """Create StatePaths for the temporary state directory.

    Args:
        state_config: OrchestratorConfig instance

    Returns:
        StatePaths instance
    """
    paths = StatePaths.from_config(state_config)

    for directory in paths.get_all_directories():
        directory.mkdir(parents=True, exist_ok=True)

    return paths


@pytest.fixture
def store(state_paths):
    """Empty HistoryStore in the temporary state directory."""
    return HistoryStore(state_paths)


@pytest.fixture
def clock():
    return FakeClock(1000.0)


@pytest.fixture
def ledger(clock):
    """Fake contract on round 1 (started at 1000, 600s long, no players yet)."""
    return FakeLedgerClient(round_id=1, start_time=1000, duration=600, clock=clock)
