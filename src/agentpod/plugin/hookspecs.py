"""Pluggy hook specifications for agentpod plugins.

All hooks use the "agentpod" namespace and are validated by pluggy at
registration time.
"""

from __future__ import annotations

from typing import Any

import pluggy

hookspec = pluggy.HookspecMarker("agentpod")


class AgentpodSpec:
    """Hook specifications for agentpod plugins."""

    @hookspec
    def agentpod_container_engine(self) -> Any | None:
        """Provide a container engine implementation.

        Engine plugins return an object satisfying
        :class:`agentpod.engine.ContainerEngine`:
            - name (str): engine identifier (e.g., "podman")
            - cli (str): engine CLI command
            - is_available() -> bool
            - async inspect_state(name) -> "absent" | "stopped" | "running"
            - async create(request), start(name), stop(name, timeout),
              kill(name), remove(name, force), logs(name, tail)
            - exec_argv(name, argv, env_names, workdir) -> list[str]

        Returns:
            Engine object, or None if this plugin doesn't provide one.
        """
