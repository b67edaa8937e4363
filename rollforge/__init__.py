"""Rollforge: immutable-artifact rollout orchestrator.

Publishes a container image under a unique tag, resolves it to a content
digest, pins that digest into a new workload definition revision and
drives the orchestration service until the new revision is stable.
"""

__version__ = "0.1.0"
__description__ = "Digest-pinned container rollouts with a hash-chained run ledger"

from rollforge.core.orchestrator import RolloutPipeline
from rollforge.monitor.renderer import RolloutRenderer
from rollforge.cli.app import app as cli

__all__ = ["RolloutPipeline", "RolloutRenderer", "cli", "__version__"]
