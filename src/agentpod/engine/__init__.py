"""Container engine boundary."""

from agentpod.engine.engine import (
    CliContainerEngine,
    ContainerEngine,
    build_create_args,
    detect_engine,
    state_from_inspect,
)

__all__ = [
    "CliContainerEngine",
    "ContainerEngine",
    "build_create_args",
    "detect_engine",
    "state_from_inspect",
]
