"""Container engine boundary with plugin-extensible providers.

The engine is the only source of truth for session state: every question
about a session ("does it exist", "is it running") is answered by asking the
engine, never from anything cached on the host.

Docker and Podman are built in (both speak the same CLI dialect). Additional
engines can be provided by plugins via ``agentpod_container_engine``.

All public coroutine methods run the blocking CLI call in a thread via
``asyncio.to_thread`` so they don't block the event loop.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import shutil
import subprocess
from typing import Any, Protocol, runtime_checkable

import pluggy

from agentpod.errors import EngineError, InvalidInputError
from agentpod.logger import logger
from agentpod.types import CreateRequest, SessionState

_NO_SUCH_OBJECT_RE = re.compile(r"no such (container|object)", re.IGNORECASE)


@runtime_checkable
class ContainerEngine(Protocol):
    """Engine contract implemented by built-ins and plugins."""

    name: str
    cli: str

    def is_available(self) -> bool: ...
    async def inspect(self, name: str) -> dict[str, Any] | None: ...
    async def inspect_state(self, name: str) -> SessionState: ...
    async def create(self, request: CreateRequest) -> str: ...
    async def start(self, name: str) -> None: ...
    async def stop(self, name: str, *, timeout: int) -> None: ...
    async def kill(self, name: str) -> None: ...
    async def remove(self, name: str, *, force: bool = False) -> None: ...
    async def logs(self, name: str, *, tail: int = 50) -> str: ...
    def exec_argv(
        self, name: str, argv: list[str], *, env_names: list[str], workdir: str | None
    ) -> list[str]: ...


class CliContainerEngine:
    """Engine adapter for Docker-compatible CLIs (``docker``, ``podman``)."""

    def __init__(self, name: str, cli: str, *, command_timeout: float = 60) -> None:
        self.name = name
        self.cli = cli
        self.command_timeout = command_timeout

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, cli={self.cli!r})"

    def is_available(self) -> bool:
        return shutil.which(self.cli) is not None

    # ------------------------------------------------------------------
    # CLI plumbing
    # ------------------------------------------------------------------

    def _run_sync(
        self,
        *args: str,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run an engine CLI command (blocking, internal only)."""
        return subprocess.run(
            [self.cli, *args],
            capture_output=True,
            text=True,
            timeout=timeout or self.command_timeout,
            env={**os.environ, **env} if env else None,
        )

    async def run(
        self,
        *args: str,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run an engine CLI command without blocking the event loop.

        Never raises on a non-zero exit; only on failure to run the CLI at all.
        """
        try:
            return await asyncio.to_thread(self._run_sync, *args, env=env, timeout=timeout)
        except FileNotFoundError as exc:
            raise EngineError(
                f"Container engine CLI '{self.cli}' not found", engine_exit_code=127
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise EngineError(
                f"'{self.cli} {args[0]}' did not finish within {exc.timeout}s"
            ) from exc

    async def _checked(
        self, *args: str, env: dict[str, str] | None = None
    ) -> subprocess.CompletedProcess[str]:
        result = await self.run(*args, env=env)
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise EngineError(
                f"'{self.cli} {args[0]}' failed with exit code {result.returncode}: {stderr[-500:]}",
                engine_exit_code=result.returncode,
                stderr=stderr,
            )
        return result

    # ------------------------------------------------------------------
    # Object queries
    # ------------------------------------------------------------------

    async def inspect(self, name: str) -> dict[str, Any] | None:
        """Return the engine's inspect document for *name*, or None if absent."""
        result = await self.run("inspect", "--type", "container", name)
        if result.returncode != 0:
            if _NO_SUCH_OBJECT_RE.search(result.stderr or ""):
                return None
            stderr = (result.stderr or "").strip()
            raise EngineError(
                f"'{self.cli} inspect' failed with exit code {result.returncode}: {stderr[-500:]}",
                engine_exit_code=result.returncode,
                stderr=stderr,
            )
        try:
            documents = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as exc:
            raise EngineError(f"Unparseable '{self.cli} inspect' output for {name}") from exc
        return documents[0] if documents else None

    async def inspect_state(self, name: str) -> SessionState:
        return state_from_inspect(await self.inspect(name))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, request: CreateRequest) -> str:
        result = await self._checked(*build_create_args(request), env=request.secret_env)
        return result.stdout.strip()

    async def start(self, name: str) -> None:
        await self._checked("start", name)

    async def stop(self, name: str, *, timeout: int) -> None:
        await self._checked("stop", "-t", str(timeout), name)

    async def kill(self, name: str) -> None:
        await self._checked("kill", name)

    async def remove(self, name: str, *, force: bool = False) -> None:
        if force:
            await self._checked("rm", "-f", name)
        else:
            await self._checked("rm", name)

    async def logs(self, name: str, *, tail: int = 50) -> str:
        """Log tail for diagnostics. Best-effort: failures come back as text."""
        result = await self.run("logs", "--tail", str(tail), name)
        return (result.stdout or "") + (result.stderr or "")

    def exec_argv(
        self,
        name: str,
        argv: list[str],
        *,
        env_names: list[str],
        workdir: str | None,
    ) -> list[str]:
        """Full argv for ``<cli> exec``. Env values are supplied via the client's env."""
        args = [self.cli, "exec"]
        if workdir:
            args.extend(["-w", workdir])
        for env_name in env_names:
            args.extend(["-e", env_name])
        args.append(name)
        args.extend(argv)
        return args


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def state_from_inspect(document: dict[str, Any] | None) -> SessionState:
    """Collapse the engine's state document into absent / stopped / running."""
    if document is None:
        return "absent"
    state = document.get("State") or {}
    if state.get("Running") is True or str(state.get("Status", "")).lower() == "running":
        return "running"
    return "stopped"


def build_create_args(request: CreateRequest) -> list[str]:
    """Build CLI args for ``<cli> create``."""
    args = ["create", "--name", request.name]
    if request.init:
        args.append("--init")
    for key, value in sorted(request.labels.items()):
        args.extend(["--label", f"{key}={value}"])
    for m in request.mounts:
        if m.readonly:
            args.extend(
                ["--mount", f"type=bind,source={m.host_path},target={m.container_path},readonly"]
            )
        else:
            args.extend(["-v", f"{m.host_path}:{m.container_path}"])
    for key, value in request.env.items():
        args.extend(["-e", f"{key}={value}"])
    # Name only: the value is inherited from the CLI process environment
    for key in request.secret_env:
        args.extend(["-e", key])
    if request.workdir:
        args.extend(["-w", request.workdir])
    args.append(request.image)
    args.extend(request.command)
    return args


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


def _is_valid_plugin_engine(candidate: Any) -> bool:
    return all(
        [
            hasattr(candidate, "name"),
            hasattr(candidate, "cli"),
            callable(getattr(candidate, "is_available", None)),
            callable(getattr(candidate, "inspect_state", None)),
            callable(getattr(candidate, "create", None)),
            callable(getattr(candidate, "exec_argv", None)),
        ]
    )


def _iter_plugin_engines(pm: pluggy.PluginManager) -> list[ContainerEngine]:
    engines: list[ContainerEngine] = []
    for engine in pm.hook.agentpod_container_engine():
        if engine is None:
            continue
        if not _is_valid_plugin_engine(engine):
            logger.warning("Ignoring invalid plugin engine object", engine_type=type(engine).__name__)
            continue
        engines.append(engine)
    return engines


def detect_engine(pm: pluggy.PluginManager, override: str | None = None) -> ContainerEngine:
    """Pick the container engine to use.

    Priority:
    1) explicit override (``[container].engine``); an unknown name is an error
    2) docker, if its CLI is on PATH
    3) first available plugin engine
    4) docker (calls will fail with a clear "CLI not found" EngineError)
    """
    candidates: dict[str, ContainerEngine] = {}
    for engine in _iter_plugin_engines(pm):
        name = str(engine.name).lower().strip()
        if not name:
            continue
        if name in candidates:
            logger.warning("Duplicate engine provider ignored", engine=name)
            continue
        candidates[name] = engine

    docker = candidates.get("docker") or CliContainerEngine("docker", "docker")

    if override:
        selected = candidates.get(override.lower())
        if selected is not None:
            return selected
        known = ", ".join(sorted(candidates)) or "none"
        raise InvalidInputError(f"Unknown container engine {override!r}; available: {known}")

    if docker.is_available():
        return docker

    for name, engine in candidates.items():
        if name != "docker" and engine.is_available():
            return engine

    return docker
