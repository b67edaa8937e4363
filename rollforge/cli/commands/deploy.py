"""``rollforge deploy ENVIRONMENT``: publish, pin and roll out one build.

Identifiers come from ``ROLLFORGE_*`` settings; the build id and source
revision may also be passed as options.  The exit code reflects the
terminal state: 0 stable, 1 failed, 3 timed out (2 for configuration
errors caught before any external call).
"""

from __future__ import annotations

import typer
from rich.console import Console

from rollforge.cli.commands._shared import EXIT_CONFIG, aws_bridges, build_dispatcher
from rollforge.config import RollforgeSettings
from rollforge.core.errors import ConfigurationError
from rollforge.core.orchestrator import RolloutPipeline
from rollforge.core.preflight import enforce_preflight
from rollforge.monitor.renderer import RolloutRenderer

console = Console()


def deploy_cmd(
    environment: str = typer.Argument(..., help="Target environment, e.g. dev or prod."),
    build_id: str = typer.Option(
        None, "--build-id", "-b", help="CI build id (default: ROLLFORGE_BUILD_ID)."
    ),
    source_ref: str = typer.Option(
        None,
        "--source-ref",
        "-s",
        help="Source revision to build (default: ROLLFORGE_SOURCE_REVISION).",
    ),
) -> None:
    """Deploy one build into ENVIRONMENT and wait until it is stable."""
    settings = RollforgeSettings()
    build_id = build_id or settings.build_id
    source_ref = source_ref or settings.source_revision

    try:
        enforce_preflight(
            settings, environment=environment, build_id=build_id, source_ref=source_ref
        )
    except ConfigurationError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=EXIT_CONFIG)

    pipeline = RolloutPipeline(
        settings.pipeline_config(),
        dispatcher=build_dispatcher(settings),
        **aws_bridges(settings),
    )
    console.print(
        f"[bold cyan]Deploying build {build_id} ({source_ref}) to {environment}...[/bold cyan]"
    )
    result = pipeline.run(settings.environment(environment), source_ref, build_id)

    RolloutRenderer(console=console).print_result(result)
    raise typer.Exit(code=result.exit_code)
