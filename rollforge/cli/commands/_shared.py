"""Wiring shared by the CLI commands."""

from __future__ import annotations

import logging
from typing import Any

from rollforge.bridge.aws import EcrRegistry, EcsDefinitionStore, EcsService, S3DynamoStateBackend
from rollforge.bridge.docker_builder import DockerCliBuilder
from rollforge.config import RollforgeSettings
from rollforge.routing.dispatcher import SinkDispatcher
from rollforge.routing.sinks.local_file import LocalFileSink
from rollforge.routing.sinks.sns import SnsSink

logger = logging.getLogger(__name__)

# Exit code for configuration problems caught before any external call.
EXIT_CONFIG = 2


def aws_bridges(settings: RollforgeSettings) -> dict[str, Any]:
    """Bridge keyword arguments for ``RolloutPipeline`` backed by AWS and docker."""
    region = settings.region
    registry = EcrRegistry(region)
    definitions = EcsDefinitionStore(region)
    return {
        "registry": registry,
        "builder": DockerCliBuilder(
            settings.build_context, settings.dockerfile, platform=settings.platform
        ),
        "definitions": definitions,
        "service": EcsService(region),
        "state": S3DynamoStateBackend(region),
    }


def build_dispatcher(settings: RollforgeSettings) -> SinkDispatcher:
    dispatcher = SinkDispatcher()
    if settings.events_path is not None:
        dispatcher.register_sink(LocalFileSink(settings.events_path))
    if settings.sns_topic_arn:
        dispatcher.register_sink(SnsSink(settings.sns_topic_arn, settings.region))
    return dispatcher
