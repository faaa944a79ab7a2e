"""Shared test fixtures for agentpod."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

from agentpod.errors import EngineError
from agentpod.types import CreateRequest, SessionState

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures; importable by test files)
# ---------------------------------------------------------------------------


def make_settings(**overrides):
    """Create a Settings object with defaults, bypassing config.toml and .env.

    Usage::

        s = make_settings(container=ContainerConfig(readiness_timeout=1))
    """
    from agentpod.config import (
        BedrockConfig,
        ContainerConfig,
        ExecSettings,
        LoggingConfig,
        SecretsConfig,
        Settings,
        WatchdogDefaults,
    )

    defaults = {
        "container": ContainerConfig(),
        "exec": ExecSettings(),
        "watchdog": WatchdogDefaults(),
        "bedrock": BedrockConfig(),
        "secrets": SecretsConfig(),
        "logging": LoggingConfig(),
        "plugins": {},
    }
    defaults.update(overrides)
    return Settings.model_construct(**defaults)


def make_session_config(tmp_path: Path | None = None, **overrides):
    """Frozen SessionConfig with fast readiness polling for tests."""
    cfg = make_settings().session_config()
    fast = {"readiness_timeout": 1.0, "readiness_poll_interval": 0.01}
    if tmp_path is not None:
        fast["aws_config_dir"] = tmp_path / "aws"
    fast.update(overrides)
    return replace(cfg, **fast)


class FakeEngine:
    """In-memory container engine.

    Containers move through created -> (starting) -> running -> exited.
    ``polls_until_running`` makes a started container report "created" for
    that many inspects before it turns "running".
    """

    name = "fake"
    cli = "fake-engine"

    def __init__(
        self,
        *,
        polls_until_running: int = 0,
        exit_on_start: bool = False,
        fail_stop: bool = False,
        fail_create: EngineError | None = None,
    ) -> None:
        self.containers: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.requests: list[CreateRequest] = []
        self.polls_until_running = polls_until_running
        self.exit_on_start = exit_on_start
        self.fail_stop = fail_stop
        self.fail_create = fail_create

    # Test setup helpers

    def add(self, name: str, status: str = "running", labels: dict[str, str] | None = None):
        self.containers[name] = {"status": status, "labels": labels or {}, "pending": 0}

    def ops(self, op: str) -> list[str]:
        return [name for call_op, name in self.calls if call_op == op]

    # ContainerEngine

    def is_available(self) -> bool:
        return True

    async def inspect(self, name: str) -> dict[str, Any] | None:
        self.calls.append(("inspect", name))
        c = self.containers.get(name)
        if c is None:
            return None
        if c["status"] == "starting":
            if c["pending"] <= 0:
                c["status"] = "running"
            else:
                c["pending"] -= 1
        status = "created" if c["status"] == "starting" else c["status"]
        return {
            "State": {"Status": status, "Running": status == "running"},
            "Config": {"Labels": c["labels"]},
        }

    async def inspect_state(self, name: str) -> SessionState:
        from agentpod.engine import state_from_inspect

        return state_from_inspect(await self.inspect(name))

    async def create(self, request: CreateRequest) -> str:
        self.calls.append(("create", request.name))
        if self.fail_create is not None:
            raise self.fail_create
        if request.name in self.containers:
            raise EngineError("Conflict. The container name is already in use", engine_exit_code=125)
        self.requests.append(request)
        self.containers[request.name] = {
            "status": "created",
            "labels": dict(request.labels),
            "pending": 0,
        }
        return f"id-{request.name}"

    async def start(self, name: str) -> None:
        self.calls.append(("start", name))
        c = self.containers[name]
        if self.exit_on_start:
            c["status"] = "exited"
        else:
            c["status"] = "starting"
            c["pending"] = self.polls_until_running

    async def stop(self, name: str, *, timeout: int) -> None:
        self.calls.append(("stop", name))
        if self.fail_stop:
            raise EngineError("stop failed: container not responding", engine_exit_code=1)
        self.containers[name]["status"] = "exited"

    async def kill(self, name: str) -> None:
        self.calls.append(("kill", name))
        if self.fail_stop:
            raise EngineError("kill failed", engine_exit_code=1)
        self.containers[name]["status"] = "exited"

    async def remove(self, name: str, *, force: bool = False) -> None:
        self.calls.append(("remove", name))
        if name not in self.containers:
            raise EngineError(f"No such container: {name}", engine_exit_code=1)
        del self.containers[name]

    async def logs(self, name: str, *, tail: int = 50) -> str:
        self.calls.append(("logs", name))
        return "watchdog: starting\n"

    def exec_argv(
        self, name: str, argv: list[str], *, env_names: list[str], workdir: str | None
    ) -> list[str]:
        args = [self.cli, "exec"]
        if workdir:
            args.extend(["-w", workdir])
        for env_name in env_names:
            args.extend(["-e", env_name])
        return [*args, name, *argv]


class FakeProcess:
    """Simulates asyncio.subprocess.Process for testing.

    ``communicate()`` blocks until :meth:`close` (or :meth:`kill`) is called.
    """

    def __init__(self) -> None:
        self._returncode: int | None = None
        self._stdout = b""
        self._stderr = b""
        self._done = asyncio.Event()
        self.pid = 12345
        self.killed = False

    def close(self, code: int = 0, stdout: bytes = b"", stderr: bytes = b"") -> None:
        """Simulate process exit."""
        self._returncode = code
        self._stdout = stdout
        self._stderr = stderr
        self._done.set()

    async def communicate(self, input: bytes | None = None) -> tuple[bytes, bytes]:
        await self._done.wait()
        return self._stdout, self._stderr

    async def wait(self) -> int:
        await self._done.wait()
        return self._returncode  # type: ignore[return-value]

    def kill(self) -> None:
        self.killed = True
        if self._returncode is None:
            self.close(-9)

    @property
    def returncode(self) -> int | None:
        return self._returncode


def finished_process(code: int = 0, stdout: bytes = b"", stderr: bytes = b"") -> FakeProcess:
    proc = FakeProcess()
    proc.close(code, stdout, stderr)
    return proc


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults: no config.toml,
    no .env, no file I/O.
    """
    monkeypatch.setattr("agentpod.config._settings", make_settings())


@pytest.fixture(autouse=True)
def _default_logging():
    """Undo per-role logging configuration done by CLI or watchdog entry points."""
    yield
    from agentpod.logger import configure

    configure()


@pytest.fixture(autouse=True)
def _clean_credential_env(monkeypatch):
    """Keep host credentials from leaking into CLI credential resolution."""
    for var in ("CLAUDE_CODE_OAUTH_TOKEN", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(var, raising=False)


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    d = tmp_path / "repo"
    d.mkdir()
    return d


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()
