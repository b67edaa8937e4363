"""``rollforge history ENVIRONMENT``: show recent rollouts from the run ledger."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from rollforge.core.run_ledger import LedgerIntegrityError, RunLedger
from rollforge.monitor.renderer import RolloutRenderer

console = Console()


def history_cmd(
    environment: str = typer.Argument(..., help="Environment to show."),
    run_id: str = typer.Option(
        None, "--run", "-r", help="Show every transition of one run instead."
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to show."),
    ledger_db: str = typer.Option(
        ".rollforge/ledger.db", "--ledger", "-l", help="Path to the ledger database."
    ),
) -> None:
    """List recent rollouts for ENVIRONMENT, or the transitions of one run."""
    db_path = Path(ledger_db)
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {ledger_db}")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    renderer = RolloutRenderer(console=console)

    if run_id is None:
        console.print(renderer.render_history(ledger, environment, limit=limit))
        return

    entries = [e for e in ledger.get_run_entries(run_id) if e.environment == environment]
    if not entries:
        console.print(f"[yellow]No run {run_id} for {environment}.[/yellow]")
        raise typer.Exit(code=1)
    try:
        valid = ledger.verify_chain(run_id)
    except LedgerIntegrityError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        valid = False
    console.print(renderer.render_run(entries, chain_valid=valid))
    if not valid:
        raise typer.Exit(code=1)
