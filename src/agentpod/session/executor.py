"""Command execution inside a running session with a hard wall-clock timeout.

Each run() races two tasks: the dispatched ``<engine> exec`` and a timer.
Whichever finishes first decides the result and the other is cancelled, so
the caller sees exactly one outcome: the command's real exit code, or the
reserved timeout sentinel. Never both.

Known limitation: cancellation is not transactional. Files the command wrote
before the timer fired stay in the session.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import time
import uuid

from agentpod.config import ExecConfig
from agentpod.engine import ContainerEngine
from agentpod.errors import EngineError
from agentpod.logger import logger
from agentpod.session._framing import kill_command, split_status, wrap_command
from agentpod.types import CommandInvocation, CommandResult

_KILL_WAIT_SECONDS = 5.0
_REMOTE_KILL_TIMEOUT = 10.0


class CommandExecutor:
    """Runs commands in sessions. Does not check that the session is running."""

    def __init__(self, engine: ContainerEngine, config: ExecConfig) -> None:
        self.engine = engine
        self.config = config

    async def run(
        self,
        session_id: str,
        command_line: str,
        env: dict[str, str] | None = None,
        timeout_seconds: float | None = None,
    ) -> CommandResult:
        invocation = CommandInvocation.build(
            session_id,
            command_line,
            timeout_seconds if timeout_seconds is not None else self.config.default_timeout,
            env,
        )
        return await self.run_invocation(invocation)

    async def run_invocation(self, invocation: CommandInvocation) -> CommandResult:
        # Tag names the pid file holding the process group to kill on timeout
        tag = f"agentpod-exec-{uuid.uuid4().hex[:12]}"
        argv = self.engine.exec_argv(
            invocation.session_id,
            [self.config.shell, "-c", wrap_command(invocation.command_line, tag), tag],
            env_names=sorted(invocation.environment),
            workdir=self.config.workdir,
        )
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **invocation.environment},
            )
        except OSError as exc:
            raise EngineError(
                f"Failed to launch '{self.engine.cli} exec': {exc}", engine_exit_code=127
            ) from exc

        dispatch = asyncio.ensure_future(proc.communicate())
        timer = asyncio.ensure_future(asyncio.sleep(invocation.timeout_seconds))
        done, _ = await asyncio.wait({dispatch, timer}, return_when=asyncio.FIRST_COMPLETED)

        if dispatch in done:
            timer.cancel()
            stdout, stderr = dispatch.result()
            return self._complete(invocation, proc.returncode, stdout, stderr, start)

        dispatch.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await dispatch
        logger.error(
            "Command timed out, cancelling",
            session=invocation.session_id,
            timeout=invocation.timeout_seconds,
            tag=tag,
        )
        await self._cancel(proc, invocation.session_id, tag)
        return CommandResult.timeout()

    def _complete(
        self,
        invocation: CommandInvocation,
        returncode: int | None,
        stdout: bytes,
        stderr: bytes,
        start: float,
    ) -> CommandResult:
        text = stdout.decode(errors="replace")
        output, exit_code = split_status(text)
        duration_ms = round((time.monotonic() - start) * 1000)

        if exit_code is None:
            # The wrapper never printed its status line: the engine could not
            # run the shell at all (no such session, shell missing, ...).
            err = stderr.decode(errors="replace").strip()
            logger.error(
                "Engine exec failed",
                session=invocation.session_id,
                code=returncode,
                stderr=err[-500:],
            )
            raise EngineError(
                f"'{self.engine.cli} exec' in {invocation.session_id} failed "
                f"with exit code {returncode}: {err[-500:]}",
                engine_exit_code=returncode,
                stderr=err,
            )

        logger.info(
            "Command completed",
            session=invocation.session_id,
            code=exit_code,
            duration_ms=duration_ms,
            output_bytes=len(output),
        )
        return CommandResult(exit_code=exit_code, output=output, timed_out=False)

    async def _cancel(self, proc: asyncio.subprocess.Process, session_id: str, tag: str) -> None:
        """Kill the exec client, then best-effort kill the command's process group."""
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            try:
                await asyncio.wait_for(proc.wait(), timeout=_KILL_WAIT_SECONDS)
            except TimeoutError:
                logger.warning("Exec client did not exit after kill", session=session_id)

        # Killing the local client does not stop the process inside the session
        argv = self.engine.exec_argv(
            session_id, [self.config.shell, "-c", kill_command(tag)], env_names=[], workdir=None
        )
        try:
            killer = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.warning(
                "In-session cancel failed; command may still be running",
                session=session_id,
                tag=tag,
                err=str(exc),
            )
            return
        try:
            await asyncio.wait_for(killer.wait(), timeout=_REMOTE_KILL_TIMEOUT)
        except TimeoutError as exc:
            with contextlib.suppress(ProcessLookupError):
                killer.kill()
            logger.warning(
                "In-session cancel failed; command may still be running",
                session=session_id,
                tag=tag,
                err=str(exc) or type(exc).__name__,
            )
