"""``rollforge bootstrap``: create the state bucket and lock table if missing."""

from __future__ import annotations

import typer
from rich.console import Console

from rollforge.bridge.aws import S3DynamoStateBackend
from rollforge.cli.commands._shared import EXIT_CONFIG
from rollforge.config import RollforgeSettings
from rollforge.core.backend import BackendBootstrapper
from rollforge.core.errors import ConfigurationError, RolloutError
from rollforge.core.partition import PartitionSelector
from rollforge.core.preflight import REQUIRED_FOR_BOOTSTRAP, enforce_preflight

console = Console()


def bootstrap_cmd(
    environment: list[str] = typer.Option(
        None,
        "--environment",
        "-e",
        help="Also create the state partition for this environment (repeatable).",
    ),
) -> None:
    """Ensure the state backend exists.  Safe to run repeatedly."""
    settings = RollforgeSettings()
    try:
        enforce_preflight(settings, required=REQUIRED_FOR_BOOTSTRAP)
        envs = [settings.environment(name) for name in environment or []]
    except (ConfigurationError, ValueError) as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=EXIT_CONFIG)

    store = S3DynamoStateBackend(settings.region)
    try:
        handle = BackendBootstrapper(
            store, settings.state_bucket, settings.lock_table, settings.region
        ).ensure_backend_exists()
        selector = PartitionSelector(store)
        for env in envs:
            partition = selector.select_partition(handle, env)
            console.print(f"  partition [cyan]{env.name}[/cyan] -> {partition.state_key}")
    except RolloutError as exc:
        console.print(f"[bold red]Bootstrap failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    console.print(
        f"[bold green]State backend ready:[/bold green] "
        f"bucket={handle.bucket} lock_table={handle.lock_table}"
    )
