"""Creation-request construction: bindings, environment, labels, command."""

from __future__ import annotations

import os
import re
from pathlib import Path

from agentpod.config import SessionConfig
from agentpod.errors import InvalidInputError
from agentpod.session._auth import AuthSpec
from agentpod.types import CreateRequest, VolumeMount

# Labels let `session-status` report creation parameters from engine truth
LABEL_MANAGED = "agentpod.managed"
LABEL_AUTH_MODE = "agentpod.auth-mode"
LABEL_IDLE_TIMEOUT = "agentpod.idle-timeout"
LABEL_MOUNT_PATH = "agentpod.mount-path"

IDLE_TIMEOUT_VAR = "AGENTPOD_IDLE_TIMEOUT"
STRICT_MODE_VAR = "AGENTPOD_STRICT_MODE"
POLL_INTERVAL_VAR = "AGENTPOD_POLL_INTERVAL"

MAX_POLL_INTERVAL = 5.0  # seconds

_SESSION_ID_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")


def validate_session_id(session_id: str) -> str:
    if not session_id or not _SESSION_ID_RE.match(session_id):
        raise InvalidInputError(
            f"Invalid session id {session_id!r}: use letters, digits, '_', '.', '-' "
            "and start with a letter or digit"
        )
    return session_id


def validate_mount_path(mount_path: str | Path) -> Path:
    """Resolve *mount_path* and check it is a readable directory."""
    path = Path(mount_path).expanduser()
    if not path.exists():
        raise InvalidInputError(f"Mount path does not exist: {path}")
    if not path.is_dir():
        raise InvalidInputError(f"Mount path is not a directory: {path}")
    if not os.access(path, os.R_OK | os.X_OK):
        raise InvalidInputError(f"Mount path is not readable: {path}")
    return path.resolve()


def watchdog_poll_interval(idle_timeout_seconds: float) -> float:
    """Poll often enough for many observations per idle window."""
    return min(MAX_POLL_INTERVAL, idle_timeout_seconds / 10)


def build_create_request(
    session_id: str,
    mount_path: Path,
    auth: AuthSpec,
    idle_timeout_seconds: int,
    config: SessionConfig,
) -> CreateRequest:
    """Assemble the engine creation request for one session.

    The caller's mount path is bound read-write at the fixed source directory,
    which is also the working directory. Watchdog settings travel as plain env
    vars; credentials only through ``secret_env``.
    """
    mounts = [VolumeMount(str(mount_path), config.source_dir, readonly=False)]
    mounts.extend(auth.mounts)

    env = {
        IDLE_TIMEOUT_VAR: str(idle_timeout_seconds),
        STRICT_MODE_VAR: "1" if config.strict_mode else "0",
        POLL_INTERVAL_VAR: f"{watchdog_poll_interval(idle_timeout_seconds):g}",
    }
    env.update(auth.env)

    return CreateRequest(
        name=session_id,
        image=config.image,
        mounts=mounts,
        env=env,
        secret_env=dict(auth.secret_env),
        command=list(config.command),
        workdir=config.source_dir,
        init=config.init,
        labels={
            LABEL_MANAGED: "true",
            LABEL_AUTH_MODE: auth.mode,
            LABEL_IDLE_TIMEOUT: str(idle_timeout_seconds),
            LABEL_MOUNT_PATH: str(mount_path),
        },
    )
