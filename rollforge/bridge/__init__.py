"""Bridge layer between Rollforge and the systems it deploys through.

Modules
-------
protocols
    ``Protocol`` interfaces for the artifact registry, image builder,
    definition store, orchestration service and state backend, plus the
    ``BridgeError`` hierarchy every implementation raises.
aws
    boto3-backed implementations: ECR, ECS task definitions, ECS services,
    S3 + DynamoDB state backend.
docker_builder
    Builds and pushes images with the ``docker`` CLI.
memory
    In-process implementations for the demo command and tests.
"""

from rollforge.bridge.protocols import (
    ArtifactRegistry,
    BridgeError,
    DefinitionStore,
    ImageBuilder,
    OrchestrationService,
    ResourceExistsError,
    StateBackend,
)

__all__ = [
    "ArtifactRegistry",
    "BridgeError",
    "DefinitionStore",
    "ImageBuilder",
    "OrchestrationService",
    "ResourceExistsError",
    "StateBackend",
]
