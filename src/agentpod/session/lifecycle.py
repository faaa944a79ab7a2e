"""Session lifecycle: idempotent ensure-running and stop-and-remove.

Session state is never stored here. Every decision starts with an engine
query, so a session killed behind our back (by the idle watchdog, by an
operator, by the engine itself) is seen as it really is on the next call.

Two paths through ensure_running():
  Warm path: the session is already running. Return immediately, no create
  Cold path: absent (or stopped, which is removed first). Create, start,
             poll until the engine reports it running
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, NoReturn

from agentpod.config import SessionConfig
from agentpod.engine import ContainerEngine, state_from_inspect
from agentpod.errors import EngineError, InvalidInputError, ReadinessTimeoutError
from agentpod.logger import logger
from agentpod.session._auth import resolve_auth
from agentpod.session._mounts import (
    LABEL_AUTH_MODE,
    LABEL_IDLE_TIMEOUT,
    LABEL_MOUNT_PATH,
    build_create_request,
    validate_mount_path,
    validate_session_id,
)
from agentpod.types import Credentials, Session

# Engine statuses that mean the container already ran and exited
_EXITED_STATUSES = frozenset({"exited", "dead"})

_DIAGNOSTIC_LOG_LINES = 50


class SessionManager:
    """Creates, inspects and disposes sessions through a container engine."""

    def __init__(self, engine: ContainerEngine, config: SessionConfig) -> None:
        self.engine = engine
        self.config = config

    async def ensure_running(
        self,
        session_id: str,
        mount_path: str | Path,
        credentials: Credentials,
        idle_timeout_seconds: int = 300,
        *,
        image: str | None = None,
    ) -> Session:
        """Make sure a session named *session_id* is running.

        All input validation happens before the first engine call. A running
        session is returned as-is; a stopped one is removed and recreated,
        never resumed.

        Raises:
            InvalidInputError: bad id, mount path, idle timeout or auth modes.
            PreconditionFailedError: Bedrock without a local AWS credential store.
            EngineError: the engine rejected a query, create or start.
            ReadinessTimeoutError: created, but not running within the bound.
                The session is left in place for the caller to inspect or stop.
        """
        validate_session_id(session_id)
        if idle_timeout_seconds <= 0:
            raise InvalidInputError(
                f"Idle timeout must be a positive number of seconds, got {idle_timeout_seconds}"
            )
        resolved_mount = validate_mount_path(mount_path)
        auth = resolve_auth(credentials, aws_config_dir=self.config.aws_config_dir)
        config = self.config if image is None else replace(self.config, image=image)

        document = await self.engine.inspect(session_id)
        state = state_from_inspect(document)
        if state == "running":
            logger.info("Session already running", session=session_id)
            return _session_from_inspect(session_id, document)

        if state == "stopped":
            logger.info("Removing stopped session before recreating", session=session_id)
            await self.engine.remove(session_id, force=True)

        request = build_create_request(
            session_id, resolved_mount, auth, idle_timeout_seconds, config
        )
        logger.info(
            "Creating session",
            session=session_id,
            engine=self.engine.name,
            image=config.image,
            mount=str(resolved_mount),
            auth_mode=auth.mode,
            env_vars=sorted([*request.env, *request.secret_env]),
            idle_timeout=idle_timeout_seconds,
        )
        await self.engine.create(request)
        await self.engine.start(session_id)
        await self._wait_ready(session_id)

        return Session(
            id=session_id,
            state="running",
            mount_path=resolved_mount,
            auth_mode=auth.mode,
            idle_timeout_seconds=idle_timeout_seconds,
        )

    async def _wait_ready(self, session_id: str) -> None:
        """Poll the engine until *session_id* is running, or raise on timeout."""
        loop = asyncio.get_running_loop()
        start = time.monotonic()
        deadline = loop.time() + self.config.readiness_timeout
        status = "unknown"

        while True:
            document = await self.engine.inspect(session_id)
            if state_from_inspect(document) == "running":
                logger.info(
                    "Session ready",
                    session=session_id,
                    elapsed_ms=round((time.monotonic() - start) * 1000),
                )
                return

            status = _status_of(document)
            if status in _EXITED_STATUSES:
                await self._raise_not_ready(
                    session_id, status, f"Session {session_id} exited before becoming ready"
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.config.readiness_poll_interval, remaining))

        await self._raise_not_ready(
            session_id,
            status,
            f"Session {session_id} did not become ready within "
            f"{self.config.readiness_timeout:g}s",
        )

    async def _raise_not_ready(self, session_id: str, status: str, message: str) -> NoReturn:
        logs = await self.engine.logs(session_id, tail=_DIAGNOSTIC_LOG_LINES)
        diagnostics = f"engine status: {status}\n--- last {_DIAGNOSTIC_LOG_LINES} log lines ---\n"
        diagnostics += logs
        logger.error(message, session=session_id, status=status, logs=logs[-2000:])
        raise ReadinessTimeoutError(message, diagnostics=diagnostics)

    async def stop_and_remove(self, session_id: str, *, force: bool = False) -> None:
        """Stop and remove *session_id*. Absent sessions are a no-op.

        Unforced stops give the session ``stop_timeout`` seconds to exit;
        forced stops kill it. Either way a failed stop is logged and removal
        still goes ahead. Confirming an unforced stop with a human is the
        CLI's job, not this method's.
        """
        validate_session_id(session_id)
        state = await self.engine.inspect_state(session_id)
        if state == "absent":
            logger.info("Session absent, nothing to stop", session=session_id)
            return

        if state == "running":
            try:
                if force:
                    await self.engine.kill(session_id)
                else:
                    await self.engine.stop(session_id, timeout=self.config.stop_timeout)
            except EngineError as exc:
                logger.warning(
                    "Stop failed, removing anyway",
                    session=session_id,
                    force=force,
                    err=str(exc),
                )

        try:
            await self.engine.remove(session_id, force=True)
        except EngineError:
            # Something else (e.g. the engine's own cleanup) may have won the race
            if await self.engine.inspect_state(session_id) == "absent":
                logger.info("Session disappeared during removal", session=session_id)
                return
            raise
        logger.info("Session removed", session=session_id, force=force)

    async def status(self, session_id: str) -> Session:
        """Describe *session_id* as the engine currently sees it."""
        validate_session_id(session_id)
        return _session_from_inspect(session_id, await self.engine.inspect(session_id))


# ---------------------------------------------------------------------------
# Inspect-document helpers
# ---------------------------------------------------------------------------


def _status_of(document: dict[str, Any] | None) -> str:
    if document is None:
        return "absent"
    return str((document.get("State") or {}).get("Status", "unknown")).lower()


def _session_from_inspect(session_id: str, document: dict[str, Any] | None) -> Session:
    state = state_from_inspect(document)
    if document is None:
        return Session(id=session_id, state=state)

    labels = (document.get("Config") or {}).get("Labels") or {}
    mount = labels.get(LABEL_MOUNT_PATH)
    auth_mode = labels.get(LABEL_AUTH_MODE)
    idle = labels.get(LABEL_IDLE_TIMEOUT)
    return Session(
        id=session_id,
        state=state,
        mount_path=Path(mount) if mount else None,
        auth_mode=auth_mode if auth_mode in ("oauth_token", "api_key", "bedrock") else None,
        idle_timeout_seconds=int(idle) if idle and idle.isdigit() else None,
    )
