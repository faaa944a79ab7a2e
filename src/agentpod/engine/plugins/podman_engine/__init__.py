"""Podman container engine plugin.

Podman's CLI is Docker-compatible for everything agentpod uses, including
``--init`` (catatonit) and ``inspect --type container``.
"""

from __future__ import annotations

from typing import Any

from agentpod.engine.engine import CliContainerEngine
from agentpod.plugin import hookimpl


class PodmanEnginePlugin:
    """Plugin providing the Podman CLI engine."""

    @hookimpl
    def agentpod_container_engine(self) -> Any | None:
        return CliContainerEngine("podman", "podman")
