"""Image builder that shells out to the ``docker`` CLI.

Registry authentication is out of scope: the caller must already be
logged in to the target registry.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from rollforge.bridge.protocols import BridgeError

logger = logging.getLogger(__name__)


class DockerCliBuilder:
    """Builds ``repository:tag`` from a local context and pushes it.

    Parameters
    ----------
    context_dir:
        Build context directory.
    dockerfile:
        Dockerfile path, relative to the context unless absolute.
    timeout_seconds:
        Ceiling for each docker invocation.
    """

    def __init__(
        self,
        context_dir: Path | str = ".",
        dockerfile: str = "Dockerfile",
        *,
        platform: str = "",
        timeout_seconds: int = 1800,
    ) -> None:
        self.context_dir = Path(context_dir)
        self.dockerfile = dockerfile
        self.platform = platform
        self.timeout_seconds = timeout_seconds

    def _run(self, args: list[str]) -> str:
        if shutil.which(args[0]) is None:
            raise BridgeError(f"{args[0]} not found on PATH", code="ENOENT")
        logger.info("Running: %s", " ".join(args))
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except (subprocess.SubprocessError, OSError) as exc:
            raise BridgeError(f"{' '.join(args[:2])} failed: {exc}") from exc
        if result.returncode != 0:
            tail = (result.stderr or result.stdout or "")[-2000:]
            raise BridgeError(
                f"{' '.join(args[:2])} exited {result.returncode}: {tail}",
                code=str(result.returncode),
            )
        return result.stdout

    def build_and_push(self, repository: str, tag: str, source_ref: str) -> str:
        image = f"{repository}:{tag}"
        build = [
            "docker",
            "build",
            "--file",
            self.dockerfile,
            "--tag",
            image,
            "--label",
            f"org.opencontainers.image.revision={source_ref}",
        ]
        if self.platform:
            build += ["--platform", self.platform]
        build.append(str(self.context_dir))
        self._run(build)

        output = self._run(["docker", "push", image])
        # `docker push` ends with "<tag>: digest: sha256:... size: N"; the
        # digest is still re-read from the registry before it is trusted.
        last_line = output.strip().splitlines()[-1] if output.strip() else image
        return last_line
