"""Data models for agentpod."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

SessionState = Literal["absent", "stopped", "running"]
AuthMode = Literal["oauth_token", "api_key", "bedrock"]
WatchdogPhase = Literal["active", "idle", "terminated"]

# Never produced by a real process: POSIX exit statuses are 0-255.
TIMED_OUT_EXIT_CODE = -1


@dataclass(frozen=True)
class Credentials:
    """Authentication material supplied by the caller.

    Exactly one mode must be populated; see ``session._auth.resolve_auth``.
    """

    oauth_token: str | None = None
    api_key: str | None = None
    bedrock: bool = False
    aws_region: str | None = None
    aws_profile: str | None = None

    def __repr__(self) -> str:
        # Keep secrets out of logs and tracebacks
        return (
            f"Credentials(oauth_token={'***' if self.oauth_token else None}, "
            f"api_key={'***' if self.api_key else None}, bedrock={self.bedrock}, "
            f"aws_region={self.aws_region!r}, aws_profile={self.aws_profile!r})"
        )


@dataclass(frozen=True)
class Session:
    """Handle to one execution environment. ``state`` is a snapshot of engine truth."""

    id: str
    state: SessionState
    mount_path: Path | None = None
    auth_mode: AuthMode | None = None
    idle_timeout_seconds: int | None = None


@dataclass(frozen=True)
class VolumeMount:
    host_path: str
    container_path: str
    readonly: bool = False


@dataclass(frozen=True)
class CreateRequest:
    """Everything the engine needs to create one session container.

    ``env`` holds non-secret values passed inline. ``secret_env`` values are
    only handed to the engine client's own process environment and referenced
    by name on its command line.
    """

    name: str
    image: str
    mounts: list[VolumeMount] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    secret_env: dict[str, str] = field(default_factory=dict)
    command: list[str] = field(default_factory=list)
    workdir: str | None = None
    init: bool = True
    labels: dict[str, str] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"CreateRequest(name={self.name!r}, image={self.image!r}, "
            f"mounts={self.mounts!r}, env={self.env!r}, "
            f"secret_env={sorted(self.secret_env)!r}, command={self.command!r})"
        )


@dataclass(frozen=True)
class CommandInvocation:
    session_id: str
    command_line: str
    timeout_seconds: float
    environment: dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        session_id: str,
        command_line: str,
        timeout_seconds: float,
        environment: dict[str, str] | None = None,
    ) -> CommandInvocation:
        """Build an invocation, dropping empty environment values."""
        env = {k: v for k, v in (environment or {}).items() if v}
        return cls(session_id, command_line, timeout_seconds, env)


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    output: str
    timed_out: bool = False

    @classmethod
    def timeout(cls) -> CommandResult:
        return cls(exit_code=TIMED_OUT_EXIT_CODE, output="", timed_out=True)

    def to_dict(self) -> dict[str, object]:
        return {"exit_code": self.exit_code, "output": self.output, "timed_out": self.timed_out}


@dataclass(frozen=True)
class ProcessInfo:
    """One row of the in-session process listing."""

    pid: int
    name: str
    args: list[str] = field(default_factory=list)
