"""Entry point for `python -m agentpod` / `agentpod`.

Subcommands:
    agentpod ensure-session ID --mount PATH [auth]   Create or reuse a session
    agentpod run-command ID COMMAND                  Run one command in a session
    agentpod stop-session ID [--force]               Stop and remove a session
    agentpod session-status ID                       Show what the engine reports
    agentpod watchdog                                Run the in-session idle watchdog

Exit codes: 0 success, 2 invalid input, 3 precondition failed, 4 engine
error, 5 readiness timeout, 124 command timeout. ``run-command`` otherwise
exits with the command's own exit code; ``--json`` tells a timeout apart from a
command that itself exits 124.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

from pydantic import ValidationError

from agentpod.config import Settings, get_settings
from agentpod.engine import ContainerEngine, detect_engine
from agentpod.errors import AgentpodError, ExecutionTimeoutError, InvalidInputError
from agentpod.logger import bound_session, configure, logger, set_level
from agentpod.plugin import get_plugin_manager
from agentpod.session import CommandExecutor, SessionManager
from agentpod.types import Credentials

_DEFAULT_IDLE_TIMEOUT = 300

# Printed on stderr only when agentpod itself ended the command, since the
# command may exit 124 on its own.
TIMED_OUT_MARKER = "agentpod: timed_out"

_RUN_EPILOG = """\
exit status is the command's own, or 124 when agentpod killed it on timeout.
A command can also exit 124 by itself; to tell the two apart, use --json
(the "timed_out" field) or look for "agentpod: timed_out" on stderr.
"""


def _load_settings() -> Settings:
    try:
        s = get_settings()
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid configuration: {exc}") from exc
    set_level(s.logging.level)
    return s


def _engine(s: Settings) -> ContainerEngine:
    engine = detect_engine(get_plugin_manager(s.plugins), s.container.engine)
    logger.debug("Container engine selected", name=engine.name, cli=engine.cli)
    return engine


def _credentials(args: argparse.Namespace, s: Settings) -> Credentials:
    """First non-empty layer wins: flags, then environment, then config.

    Layers are never merged, so a token in config.toml cannot combine with
    an API key on the command line into a two-mode request.
    """
    region = args.aws_region or s.bedrock.aws_region
    profile = args.aws_profile or s.bedrock.aws_profile
    if args.oauth_token or args.api_key or args.bedrock:
        return Credentials(
            oauth_token=args.oauth_token,
            api_key=args.api_key,
            bedrock=args.bedrock,
            aws_region=region,
            aws_profile=profile,
        )

    env_oauth = os.environ.get("CLAUDE_CODE_OAUTH_TOKEN")
    env_api_key = os.environ.get("ANTHROPIC_API_KEY")
    if env_oauth or env_api_key:
        return Credentials(oauth_token=env_oauth, api_key=env_api_key)

    oauth = s.secrets.claude_code_oauth_token
    api_key = s.secrets.anthropic_api_key
    return Credentials(
        oauth_token=oauth.get_secret_value() if oauth else None,
        api_key=api_key.get_secret_value() if api_key else None,
    )


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise InvalidInputError(f"Expected NAME=VALUE for -e, got {pair!r}")
        env[name] = value
    return env


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


async def _ensure_session(args: argparse.Namespace) -> int:
    s = _load_settings()
    manager = SessionManager(
        _engine(s),
        s.session_config(image=args.image, strict_mode=False if args.non_strict else None),
    )
    idle_timeout = args.idle_timeout if args.idle_timeout is not None else s.watchdog.idle_timeout
    session = await manager.ensure_running(
        args.session_id,
        args.mount,
        _credentials(args, s),
        idle_timeout,
    )
    print(session.id)
    return 0


async def _run_command(args: argparse.Namespace) -> int:
    s = _load_settings()
    if args.timeout is not None and args.timeout <= 0:
        raise InvalidInputError("--timeout must be positive")
    executor = CommandExecutor(_engine(s), s.exec_config())
    result = await executor.run(
        args.session_id,
        args.command_line,
        _parse_env(args.env),
        args.timeout,
    )
    if args.json:
        print(json.dumps(result.to_dict()))
    elif result.output:
        print(result.output)
    if result.timed_out:
        print(TIMED_OUT_MARKER, file=sys.stderr)
        raise ExecutionTimeoutError(
            f"Command in {args.session_id} exceeded "
            f"{args.timeout if args.timeout is not None else s.exec.default_timeout:g}s"
        )
    return result.exit_code


async def _stop_session(args: argparse.Namespace) -> int:
    s = _load_settings()
    if not args.force and sys.stdin.isatty():
        answer = input(f"Stop and remove session {args.session_id}? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted", file=sys.stderr)
            return 1
    manager = SessionManager(_engine(s), s.session_config())
    await manager.stop_and_remove(args.session_id, force=args.force)
    return 0


async def _session_status(args: argparse.Namespace) -> int:
    s = _load_settings()
    session = await SessionManager(_engine(s), s.session_config()).status(args.session_id)
    if args.json:
        print(
            json.dumps(
                {
                    "id": session.id,
                    "state": session.state,
                    "mount_path": str(session.mount_path) if session.mount_path else None,
                    "auth_mode": session.auth_mode,
                    "idle_timeout_seconds": session.idle_timeout_seconds,
                }
            )
        )
    else:
        print(session.state)
    return 0


def _watchdog() -> None:
    from agentpod.watchdog import main as watchdog_main

    watchdog_main()


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentpod",
        description="Container sessions for running a coding agent from build pipelines",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ensure = sub.add_parser("ensure-session", help="Create a session, or reuse a running one")
    ensure.add_argument("session_id", metavar="ID")
    ensure.add_argument("--mount", required=True, help="Host directory to bind into the session")
    ensure.add_argument("--oauth-token", help="Claude Code OAuth token")
    ensure.add_argument("--api-key", help="Anthropic API key")
    ensure.add_argument("--bedrock", action="store_true", help="Authenticate via AWS Bedrock")
    ensure.add_argument("--aws-region", help="AWS region (Bedrock)")
    ensure.add_argument("--aws-profile", help="AWS profile (Bedrock)")
    ensure.add_argument(
        "--idle-timeout",
        type=int,
        default=None,
        help=f"Seconds of agent inactivity before the session stops itself "
        f"(default: config or {_DEFAULT_IDLE_TIMEOUT})",
    )
    ensure.add_argument("--image", help="Image reference (default: [container].image)")
    ensure.add_argument(
        "--non-strict",
        action="store_true",
        help="Count any agent process as activity, not only non-interactive runs",
    )

    run = sub.add_parser(
        "run-command",
        help="Run a command in a running session",
        epilog=_RUN_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run.add_argument("session_id", metavar="ID")
    run.add_argument("command_line", metavar="COMMAND")
    run.add_argument("--timeout", type=float, default=None, help="Seconds (default: 600)")
    run.add_argument(
        "-e", "--env", action="append", default=[], metavar="NAME=VALUE", help="Set a variable"
    )
    run.add_argument("--json", action="store_true", help="Print the result as JSON")

    stop = sub.add_parser("stop-session", help="Stop and remove a session")
    stop.add_argument("session_id", metavar="ID")
    stop.add_argument("--force", action="store_true", help="Kill instead of a graceful stop")

    status = sub.add_parser("session-status", help="Show a session's state")
    status.add_argument("session_id", metavar="ID")
    status.add_argument("--json", action="store_true", help="Print as JSON")

    sub.add_parser("watchdog", help="Run the idle watchdog (inside a session)")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    match args.command:
        case "watchdog":
            _watchdog()
            return
        case "ensure-session":
            handler = _ensure_session
        case "run-command":
            handler = _run_command
        case "stop-session":
            handler = _stop_session
        case "session-status":
            handler = _session_status
        case _:
            raise AssertionError(args.command)

    configure("cli")
    with bound_session(args.session_id, command=args.command):
        try:
            code = asyncio.run(handler(args))
        except AgentpodError as exc:
            logger.error(str(exc), error=type(exc).__name__, exit_code=exc.exit_code)
            diagnostics = getattr(exc, "diagnostics", "")
            if diagnostics:
                print(diagnostics, file=sys.stderr)
            sys.exit(exc.exit_code)
    sys.exit(code)


if __name__ == "__main__":
    main()
