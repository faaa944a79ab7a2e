"""Docker container engine plugin."""

from __future__ import annotations

from typing import Any

from agentpod.engine.engine import CliContainerEngine
from agentpod.plugin import hookimpl


class DockerEnginePlugin:
    """Plugin providing the Docker CLI engine."""

    @hookimpl
    def agentpod_container_engine(self) -> Any | None:
        return CliContainerEngine("docker", "docker")
