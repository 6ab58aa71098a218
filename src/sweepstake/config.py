"""Configuration management for the Sweepstake orchestrator."""

import os
import re
import tomllib
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field


_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class ConfigurationError(ValueError):
    """Raised for settings that make startup impossible.

    This is the only error class that is allowed to terminate the process.
    """


def _find_repo_root(start_dir: Path) -> Path:
    """Find repository root by walking upward looking for .git or pyproject.toml."""
    current_dir = start_dir

    while True:
        if (current_dir / ".git").exists() or (current_dir / "pyproject.toml").exists():
            return current_dir

        parent_dir = current_dir.parent

        # Stop if we reach filesystem root
        if parent_dir == current_dir:
            return start_dir

        current_dir = parent_dir


def _load_repo_config_data(repo_root: Path) -> Optional[dict]:
    """Load repo config data from .sweepstake/config.toml if it exists."""
    config_file = repo_root / ".sweepstake" / "config.toml"

    if not config_file.exists():
        return None

    try:
        with open(config_file, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Malformed config file {config_file}: {e}") from e


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.environ.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def _setting(
    data: dict,
    key: str,
    env_names: tuple[str, ...],
    default=None,
):
    """Resolve one setting: environment first, then repo config, then default."""
    env_value = _first_env(*env_names)
    if env_value is not None:
        return env_value
    if key in data and data[key] not in (None, ""):
        return data[key]
    return default


def _as_int(value, *, name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid config: {name} must be an int")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ConfigurationError(f"Invalid config: {name} must be an int")


def _as_float(value, *, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid config: {name} must be a number") from e


class ChainConfig(BaseModel):
    """Connection settings for the contract."""

    rpc_url: Optional[str] = Field(default=None, description="JSON-RPC endpoint")
    contract_address: Optional[str] = Field(default=None, description="Lottery contract address")
    private_key: Optional[str] = Field(default=None, repr=False, description="Caller key for transitions")
    request_timeout_seconds: float = Field(default=15.0)
    receipt_timeout_seconds: float = Field(default=120.0)
    transition_gas_limit: int = Field(default=500000)
    round_duration_seconds: Optional[int] = Field(
        default=None,
        description="Override for ROUND_DURATION(); read from the contract when unset",
    )
    winning_number_count: int = Field(default=7)


class EventsConfig(BaseModel):
    """Settings for the event subscription."""

    start_block: int = Field(default=0)
    max_block_span: int = Field(default=2000)
    poll_interval_seconds: float = Field(default=10.0)


class LoopConfig(BaseModel):
    """Polling intervals for the independent loops."""

    trigger_interval_seconds: float = Field(default=30.0)
    view_interval_seconds: float = Field(default=5.0)
    shutdown_grace_seconds: float = Field(default=10.0)


class OrchestratorConfig(BaseModel):
    """Configuration for the orchestrator process."""

    state_dir: Path = Field(
        default_factory=lambda: Path(os.environ.get("SWEEPSTAKE_STATE_DIR", "./sweepstake_state"))
    )
    chain: ChainConfig = Field(default_factory=ChainConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    loops: LoopConfig = Field(default_factory=LoopConfig)

    model_config = {"frozen": False}

    @classmethod
    def from_env(cls, cli_state_dir: Optional[str] = None, load_dotenv_file: bool = True) -> "OrchestratorConfig":
        """Load configuration with the following precedence:

        1. CLI --state-dir option (state_dir only)
        2. SWEEPSTAKE_* environment variables (plus the bare RPC_URL,
           CONTRACT_ADDRESS and PRIVATE_KEY names used by the contract tooling)
        3. repo-local .sweepstake/config.toml (walk upward from CWD)
        4. Defaults

        Args:
            cli_state_dir: State directory from CLI --state-dir option
            load_dotenv_file: Read a .env file from the working directory first

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        if load_dotenv_file:
            dotenv_path = find_dotenv(usecwd=True)
            if dotenv_path:
                load_dotenv(dotenv_path, override=False)

        data = _load_repo_config_data(_find_repo_root(Path.cwd())) or {}
        chain_data = data.get("chain") if isinstance(data.get("chain"), dict) else {}
        events_data = data.get("events") if isinstance(data.get("events"), dict) else {}
        loops_data = data.get("loops") if isinstance(data.get("loops"), dict) else {}

        state_dir = cli_state_dir or _setting(data, "state_dir", ("SWEEPSTAKE_STATE_DIR",), "./sweepstake_state")

        chain = ChainConfig(
            rpc_url=_setting(chain_data, "rpc_url", ("SWEEPSTAKE_RPC_URL", "RPC_URL")),
            contract_address=_setting(
                chain_data, "contract_address", ("SWEEPSTAKE_CONTRACT_ADDRESS", "CONTRACT_ADDRESS")
            ),
            private_key=_setting(chain_data, "private_key", ("SWEEPSTAKE_PRIVATE_KEY", "PRIVATE_KEY")),
            request_timeout_seconds=_as_float(
                _setting(chain_data, "request_timeout_seconds", ("SWEEPSTAKE_REQUEST_TIMEOUT",), 15.0),
                name="request_timeout_seconds",
            ),
            receipt_timeout_seconds=_as_float(
                _setting(chain_data, "receipt_timeout_seconds", ("SWEEPSTAKE_RECEIPT_TIMEOUT",), 120.0),
                name="receipt_timeout_seconds",
            ),
            transition_gas_limit=_as_int(
                _setting(chain_data, "transition_gas_limit", ("SWEEPSTAKE_GAS_LIMIT",), 500000),
                name="transition_gas_limit",
            ),
            round_duration_seconds=_as_int(
                _setting(chain_data, "round_duration_seconds", ("SWEEPSTAKE_ROUND_DURATION",)),
                name="round_duration_seconds",
            ),
            winning_number_count=_as_int(
                _setting(chain_data, "winning_number_count", ("SWEEPSTAKE_WINNING_NUMBER_COUNT",), 7),
                name="winning_number_count",
            ),
        )
        events = EventsConfig(
            start_block=_as_int(
                _setting(events_data, "start_block", ("SWEEPSTAKE_START_BLOCK",), 0),
                name="start_block",
            ),
            max_block_span=_as_int(
                _setting(events_data, "max_block_span", ("SWEEPSTAKE_MAX_BLOCK_SPAN",), 2000),
                name="max_block_span",
            ),
            poll_interval_seconds=_as_float(
                _setting(events_data, "poll_interval_seconds", ("SWEEPSTAKE_EVENT_POLL_INTERVAL",), 10.0),
                name="poll_interval_seconds",
            ),
        )
        loops = LoopConfig(
            trigger_interval_seconds=_as_float(
                _setting(loops_data, "trigger_interval_seconds", ("SWEEPSTAKE_TRIGGER_INTERVAL",), 30.0),
                name="trigger_interval_seconds",
            ),
            view_interval_seconds=_as_float(
                _setting(loops_data, "view_interval_seconds", ("SWEEPSTAKE_VIEW_INTERVAL",), 5.0),
                name="view_interval_seconds",
            ),
            shutdown_grace_seconds=_as_float(
                _setting(loops_data, "shutdown_grace_seconds", ("SWEEPSTAKE_SHUTDOWN_GRACE",), 10.0),
                name="shutdown_grace_seconds",
            ),
        )

        return cls(state_dir=Path(state_dir), chain=chain, events=events, loops=loops)

    def validate_for_chain(self, require_signer: bool = False) -> None:
        """Check the settings a chain-facing command needs.

        Args:
            require_signer: Also require a private key (for submitting transitions)

        Raises:
            ConfigurationError: If any required setting is missing or malformed
        """
        if not self.chain.rpc_url:
            raise ConfigurationError(
                "RPC endpoint not configured. Set SWEEPSTAKE_RPC_URL (or RPC_URL) "
                "or [chain].rpc_url in .sweepstake/config.toml"
            )
        if not self.chain.contract_address:
            raise ConfigurationError(
                "Contract address not configured. Set SWEEPSTAKE_CONTRACT_ADDRESS (or CONTRACT_ADDRESS)"
            )
        if not _ADDRESS_RE.match(self.chain.contract_address):
            raise ConfigurationError(f"Invalid contract address: {self.chain.contract_address}")
        if require_signer and not self.chain.private_key:
            raise ConfigurationError(
                "Private key not configured. Set SWEEPSTAKE_PRIVATE_KEY (or PRIVATE_KEY) to submit transitions"
            )

        intervals = {
            "trigger_interval_seconds": self.loops.trigger_interval_seconds,
            "view_interval_seconds": self.loops.view_interval_seconds,
            "poll_interval_seconds": self.events.poll_interval_seconds,
            "request_timeout_seconds": self.chain.request_timeout_seconds,
            "receipt_timeout_seconds": self.chain.receipt_timeout_seconds,
        }
        for name, value in intervals.items():
            if value <= 0:
                raise ConfigurationError(f"Invalid config: {name} must be positive, got {value}")
        if self.events.max_block_span <= 0:
            raise ConfigurationError("Invalid config: max_block_span must be positive")
        if self.chain.round_duration_seconds is not None and self.chain.round_duration_seconds <= 0:
            raise ConfigurationError("Invalid config: round_duration_seconds must be positive")
        if self.chain.winning_number_count < 0:
            raise ConfigurationError("Invalid config: winning_number_count must not be negative")
