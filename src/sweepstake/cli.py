"""Typer-based CLI for the Sweepstake orchestrator."""

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console, Group
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .chain.client import LedgerClient
from .chain.web3_client import Web3LedgerClient
from .config import ConfigurationError, OrchestratorConfig
from .coordinator import TriggerCoordinator
from .history.store import HistoryStore
from .models.events import EventKind
from .models.trigger import TriggerOutcome
from .models.view import ViewSnapshot
from .paths import StatePaths
from .runtime import Orchestrator
from .timer import format_units, timer_label
from .view import ViewAggregator

app = typer.Typer(
    name="sweepstake",
    help="Sweepstake - round lifecycle orchestrator for the lottery contract",
    add_completion=False,
)

console = Console()

_KINDS = {
    "entry": EventKind.ENTRY_RECORDED,
    "resolved": EventKind.ROUND_RESOLVED,
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # web3 and urllib3 are chatty at DEBUG
    for name in ("web3", "urllib3"):
        logging.getLogger(name).setLevel(logging.INFO if verbose else logging.WARNING)


@app.callback()
def main_callback(
    ctx: typer.Context,
    state_dir: Optional[str] = typer.Option(
        None,
        "--state-dir",
        help="Path to state directory (default: SWEEPSTAKE_STATE_DIR env or ./sweepstake_state)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
):
    """Sweepstake orchestrator: trigger, ingest and watch lottery rounds."""
    _setup_logging(verbose)
    ctx.obj = {"state_dir": state_dir}


def _load_config(ctx: typer.Context) -> OrchestratorConfig:
    state_dir = (ctx.obj or {}).get("state_dir")
    try:
        return OrchestratorConfig.from_env(cli_state_dir=state_dir)
    except ConfigurationError as e:
        _fail(e)


def _fail(error: Exception) -> None:
    console.print(f"[red]Error: {error}[/red]")
    raise typer.Exit(code=1)


def _build_client(config: OrchestratorConfig, require_signer: bool = False) -> LedgerClient:
    """Create the contract client and verify the endpoint at startup.

    Raises:
        ConfigurationError: If settings are invalid or the endpoint is unreachable
    """
    client = Web3LedgerClient.from_config(config, require_signer=require_signer)
    client.check_connection()
    return client


def _connect(config: OrchestratorConfig, require_signer: bool = False) -> LedgerClient:
    try:
        return _build_client(config, require_signer=require_signer)
    except ConfigurationError as e:
        _fail(e)


def _open_store(config: OrchestratorConfig) -> HistoryStore:
    paths = StatePaths.from_config(config)
    for directory in paths.get_all_directories():
        directory.mkdir(parents=True, exist_ok=True)
    return HistoryStore(paths)


def render_snapshot(snapshot: ViewSnapshot) -> Panel:
    """Round panel for `status` and `watch`."""
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="dim")
    grid.add_column()

    def _or_dash(value) -> str:
        return "-" if value is None else str(value)

    grid.add_row("Round", _or_dash(snapshot.round_id))
    grid.add_row("Timer", Text(timer_label(snapshot.phase, snapshot.remaining), style="bold yellow"))
    grid.add_row("Players", _or_dash(snapshot.participant_count))
    pool = "-" if snapshot.pool_balance is None else f"{format_units(snapshot.pool_balance)} ETH"
    grid.add_row("Pool", pool)

    result = snapshot.last_result
    if result is not None:
        numbers = ", ".join(str(n) for n in result.winning_numbers)
        grid.add_row("Last draw", f"round {result.round_id}: [{numbers}]")
        grid.add_row("Last winner", result.recipient or "none")
    else:
        grid.add_row("Last draw", "none yet")

    parts = [grid]
    if snapshot.stale:
        refreshed = snapshot.refreshed_at.strftime("%H:%M:%S") if snapshot.refreshed_at else "never"
        parts.append(Text(f"Refresh failed ({snapshot.last_error}); showing data from {refreshed}", style="red"))

    return Panel(
        Group(*parts),
        title="[bold]Current Round[/bold]",
        border_style="red" if snapshot.stale else "green",
        padding=(0, 1),
    )


@app.command()
def run(
    ctx: typer.Context,
    no_ingest: bool = typer.Option(
        False,
        "--no-ingest",
        help="Do not ingest contract events into the history store",
    ),
    no_trigger: bool = typer.Option(
        False,
        "--no-trigger",
        help="Do not submit round transitions",
    ),
):
    """Run the server loops until SIGINT/SIGTERM.

    The trigger loop requests the draw once a round has expired with
    participants; the ingest loop records entries and draws to history.
    """
    if no_ingest and no_trigger:
        console.print("[red]Error: Nothing to run (both --no-ingest and --no-trigger given)[/red]")
        raise typer.Exit(code=1)

    config = _load_config(ctx)
    client = _connect(config, require_signer=not no_trigger)
    store = None if no_ingest else _open_store(config)

    orchestrator = Orchestrator.from_config(
        config,
        client,
        store=store,
        trigger=not no_trigger,
        ingest=not no_ingest,
    )

    console.print(f"[green]Orchestrating contract[/green] {config.chain.contract_address}")
    if store is not None:
        console.print(f"[dim]History:[/dim] {store.paths.history} ({len(store)} record(s))")

    try:
        asyncio.run(orchestrator.run_until_signalled())
    finally:
        client.close()

    console.print("[bold green]Stopped[/bold green]")


@app.command()
def watch(ctx: typer.Context):
    """Show a live view of the current round until interrupted."""
    config = _load_config(ctx)
    client = _connect(config)

    with Live(render_snapshot(ViewSnapshot()), console=console, refresh_per_second=4) as live:
        orchestrator = Orchestrator.from_config(
            config,
            client,
            trigger=False,
            ingest=False,
            view=True,
            on_snapshot=lambda snapshot: live.update(render_snapshot(snapshot)),
        )
        try:
            asyncio.run(orchestrator.run_until_signalled())
        finally:
            client.close()


@app.command()
def status(ctx: typer.Context):
    """Show a one-shot snapshot of the current round."""
    config = _load_config(ctx)
    client = _connect(config)

    try:
        snapshot = ViewAggregator(client).poll()
    finally:
        client.close()

    console.print(render_snapshot(snapshot))
    if snapshot.stale:
        raise typer.Exit(code=1)


@app.command()
def trigger(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Submit even if the round does not look eligible; the contract decides",
    ),
):
    """Request the winner draw for the current round (one coordinator tick)."""
    config = _load_config(ctx)
    client = _connect(config, require_signer=True)

    try:
        result = TriggerCoordinator(client).tick(force=force)
    finally:
        client.close()

    if result.attempt is None:
        console.print(f"[yellow]Nothing to do:[/yellow] {result.skipped_reason}")
        if result.timing is None:
            raise typer.Exit(code=1)
        return

    attempt = result.attempt
    if attempt.outcome == TriggerOutcome.CONFIRMED:
        console.print(f"[bold green]Draw requested for round {attempt.round_id}[/bold green]")
        console.print(f"  [dim]Tx:[/dim] {attempt.tx_hash}")
    elif attempt.outcome == TriggerOutcome.REJECTED_BY_LEDGER:
        console.print(f"[yellow]Refused by contract:[/yellow] {attempt.reason}")
    else:
        console.print(f"[red]Draw request not confirmed:[/red] {attempt.reason}")
        if attempt.tx_hash:
            console.print(f"  [dim]Tx:[/dim] {attempt.tx_hash}")
        raise typer.Exit(code=1)


history_app = typer.Typer(help="History commands")
app.add_typer(history_app, name="history")


@history_app.command("tail")
def history_tail(
    ctx: typer.Context,
    n: int = typer.Option(
        20,
        "--n",
        help="Number of recent records to display",
    ),
    kind: Optional[str] = typer.Option(
        None,
        "--kind",
        help="Only show one kind: entry or resolved",
    ),
):
    """Display the last N ingested history records.

    Skips malformed lines with warnings.
    """
    event_kind = None
    if kind is not None:
        event_kind = _KINDS.get(kind.lower())
        if event_kind is None:
            console.print(f"[red]Error: Unknown kind '{kind}' (expected: {', '.join(_KINDS)})[/red]")
            raise typer.Exit(code=1)

    config = _load_config(ctx)
    paths = StatePaths.from_config(config)

    if not paths.history.exists():
        console.print("[dim]No history recorded[/dim]")
        return

    records = HistoryStore(paths).tail(n, kind=event_kind)

    if not records:
        console.print("[dim]No history recorded[/dim]")
        return

    table = Table(title=f"Last {len(records)} History Record(s)")
    table.add_column("Seq", style="dim", justify="right")
    table.add_column("Block", style="cyan", justify="right")
    table.add_column("Kind", style="magenta")
    table.add_column("Round", justify="right")
    table.add_column("Participant", style="yellow")
    table.add_column("Numbers")
    table.add_column("Prize (ETH)", style="green", justify="right")

    for record in records:
        participant = record.participant or "-"
        if len(participant) > 14:
            participant = participant[:8] + "..." + participant[-4:]
        prize = format_units(int(record.prize)) if record.prize is not None else "-"
        table.add_row(
            str(record.seq),
            f"{record.block_number}:{record.log_index}",
            record.kind.value,
            str(record.round_id),
            participant,
            ", ".join(str(n) for n in record.numbers),
            prize,
        )

    console.print(table)


@app.command()
def version():
    """Show Sweepstake orchestrator version."""
    from . import __version__
    console.print(f"Sweepstake orchestrator v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
