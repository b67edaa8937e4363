"""Main Typer application: imports and registers all CLI commands.

Entry point: ``rollforge`` (configured via pyproject.toml project.scripts).
"""

from __future__ import annotations

import logging

import typer

from rollforge.cli.commands.bootstrap import bootstrap_cmd
from rollforge.cli.commands.demo import demo_cmd
from rollforge.cli.commands.deploy import deploy_cmd
from rollforge.cli.commands.history import history_cmd

app = typer.Typer(
    name="rollforge",
    help="Rollforge: digest-pinned container rollouts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="deploy", help="Build, pin and roll out to an environment.")(deploy_cmd)
app.command(name="bootstrap", help="Create the state bucket and lock table.")(bootstrap_cmd)
app.command(name="history", help="Show recent rollouts from the run ledger.")(history_cmd)
app.command(name="demo", help="Run a rollout against in-memory stand-ins.")(demo_cmd)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        envvar="ROLLFORGE_LOG_LEVEL",
        help="Logging level (DEBUG, INFO, WARNING...).",
    ),
) -> None:
    """Configure logging once for every command."""
    logging.basicConfig(
        level=(log_level or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
