"""``rollforge demo``: run a complete rollout against in-memory bridges.

Seeds a three-container definition (app plus two sidecars) and a service
with two tasks, then deploys a build through every stage.  The registry
indexes the push only after a couple of polls, so digest resolution is
visibly retried.  No network access and no real waiting.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from rollforge.bridge.memory import (
    InMemoryDefinitionStore,
    InMemoryImageBuilder,
    InMemoryOrchestrationService,
    InMemoryRegistry,
    InMemoryStateBackend,
)
from rollforge.core.orchestrator import RolloutPipeline
from rollforge.core.run_ledger import RunLedger
from rollforge.models.config import PipelineConfig
from rollforge.models.environment import Environment
from rollforge.monitor.renderer import RolloutRenderer
from rollforge.routing.dispatcher import SinkDispatcher
from rollforge.routing.sinks.local_file import LocalFileSink

console = Console()

DEMO_REPOSITORY = "000000000000.dkr.ecr.local.amazonaws.com/demo-web"
DEMO_FAMILY = "demo-web"


def seed_demo_definition(store: InMemoryDefinitionStore, repository: str, family: str) -> str:
    """Register revision 1 of *family* with tag-referenced images; return its ARN."""
    arn = f"{store.arn_prefix}/{family}:1"
    store.seed(
        {
            "family": family,
            "taskDefinitionArn": arn,
            "revision": 1,
            "status": "ACTIVE",
            "requiresAttributes": [{"name": "com.amazonaws.ecs.capability.ecr-auth"}],
            "compatibilities": ["EC2", "FARGATE"],
            "registeredAt": "2026-01-01T00:00:00+00:00",
            "registeredBy": "arn:aws:iam::000000000000:role/seed",
            "networkMode": "awsvpc",
            "requiresCompatibilities": ["FARGATE"],
            "cpu": "256",
            "memory": "512",
            "executionRoleArn": "arn:aws:iam::000000000000:role/exec",
            "containerDefinitions": [
                {"name": "web", "image": f"{repository}:latest", "essential": True,
                 "portMappings": [{"containerPort": 8080}]},
                {"name": "log-router", "image": f"{repository}:latest", "essential": False},
                {"name": "metrics", "image": f"{repository}:latest", "essential": False},
            ],
        }
    )
    return arn


def demo_cmd(
    environment: str = typer.Option("dev", "--environment", "-e", help="Demo environment name."),
    build_id: str = typer.Option("42", "--build-id", help="Build id to deploy."),
    source_ref: str = typer.Option(
        "abc1234def5678abc1234def5678abc1234def56", "--source-ref", help="Source revision."
    ),
    never_resolve: bool = typer.Option(
        False, "--never-resolve", help="Registry never indexes the push (shows a failed run)."
    ),
    ledger_db: str = typer.Option(
        ".rollforge/demo-ledger.db", "--ledger", help="Path to the demo ledger database."
    ),
    events: str = typer.Option(
        None, "--events", help="Also append the notification to this JSONL file."
    ),
) -> None:
    """Run one deploy end to end against in-memory AWS stand-ins."""
    registry = InMemoryRegistry(index_after=None if never_resolve else 2)
    definitions = InMemoryDefinitionStore()
    service = InMemoryOrchestrationService(start_after=1)
    state = InMemoryStateBackend()

    config = PipelineConfig(
        repository=DEMO_REPOSITORY,
        cluster="demo",
        service="web",
        family=DEMO_FAMILY,
        state_bucket="demo-state",
        lock_table="demo-locks",
        stability_poll_seconds=1.0,
        stability_timeout_seconds=30.0,
        ledger_db_path=Path(ledger_db),
    )
    seed_arn = seed_demo_definition(definitions, DEMO_REPOSITORY, DEMO_FAMILY)
    service.create_service(config.service_target, seed_arn, desired_count=2)

    dispatcher = SinkDispatcher()
    if events:
        dispatcher.register_sink(LocalFileSink(events))

    pipeline = RolloutPipeline(
        config,
        registry=registry,
        builder=InMemoryImageBuilder(registry),
        definitions=definitions,
        service=service,
        state=state,
        ledger=RunLedger(config.ledger_db_path),
        dispatcher=dispatcher,
        sleep=lambda _seconds: None,
    )

    console.print()
    console.print(
        Panel(
            "[bold]Rollforge demo[/bold]\n\n"
            "Publishing, pinning and rolling out against in-memory stand-ins.",
            border_style="cyan",
            padding=(1, 2),
        )
    )
    result = pipeline.run(Environment.named(environment), source_ref, build_id)

    renderer = RolloutRenderer(console=console)
    renderer.print_result(result)
    console.print(
        renderer.render_run(
            pipeline.ledger.get_run_entries(result.run_id),
            chain_valid=pipeline.ledger.verify_chain(result.run_id),
        )
    )
    raise typer.Exit(code=result.exit_code)
