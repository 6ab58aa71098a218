"""Path management for the orchestrator's local state directory."""

from pathlib import Path

from .config import OrchestratorConfig
from .models.events import EventKind


class StatePaths:
    """Manages paths within the state directory."""

    def __init__(self, state_root: Path):
        """Initialize state paths from root directory.

        Args:
            state_root: Root directory for local orchestrator state
        """
        self.root = state_root

        self.history = state_root / "history"

        # One append-only collection per event kind
        self.entries_file = self.history / "entries.jsonl"
        self.resolutions_file = self.history / "resolutions.jsonl"

    @classmethod
    def from_config(cls, config: OrchestratorConfig) -> "StatePaths":
        """Create StatePaths from an OrchestratorConfig."""
        return cls(config.state_dir)

    def history_file(self, kind: EventKind) -> Path:
        """Get the history collection for an event kind."""
        if kind == EventKind.ENTRY_RECORDED:
            return self.entries_file
        return self.resolutions_file

    def get_all_directories(self) -> list[Path]:
        """Get list of all directories that should exist in the state dir."""
        return [self.root, self.history]
