"""Command wrapping, cancellation and trailing status-token extraction.

The session shell runs the caller's command as a background job in its own
process group, with stderr merged into stdout, and records the group id in a
pid file named after the invocation tag. After the job ends the shell prints
one status line of its own::

    <command output...>
    __AGENTPOD_EXIT__:<code>

The leading newline the wrapper emits guarantees the token starts a line
even when the command's output does not end with one.

On timeout, :func:`kill_command` kills the whole recorded group, so children
the command forked die with it.
"""

from __future__ import annotations

import re

STATUS_TOKEN = "__AGENTPOD_EXIT__:"

# Inside the session
PID_DIR = "/tmp"

_STATUS_LINE_RE = re.compile(rf"(?:^|\n){re.escape(STATUS_TOKEN)}(\d+)[ \t]*(?:\n|$)")


def pid_file(tag: str) -> str:
    return f"{PID_DIR}/{tag}.pid"


def wrap_command(command_line: str, tag: str) -> str:
    """Shell script that runs *command_line* and appends the status line.

    ``set -m`` gives the background job a process group whose id is the
    job's pid. The subshell keeps ``exit`` in the caller's command from
    skipping the status line.
    """
    pf = pid_file(tag)
    return (
        "set -m\n"
        f"(\n{command_line}\n) 2>&1 &\n"
        f"echo $! > {pf}\n"
        "wait $!\n"
        "status=$?\n"
        f"rm -f {pf}\n"
        f"printf '\\n{STATUS_TOKEN}%d\\n' \"$status\"\n"
    )


def kill_command(tag: str) -> str:
    """Shell script that SIGKILLs the process group recorded for *tag*."""
    pf = pid_file(tag)
    return f'pgid=$(cat {pf} 2>/dev/null) && kill -KILL -- "-$pgid"\nrm -f {pf}\n'


def split_status(text: str) -> tuple[str, int | None]:
    """Split wrapped output into ``(output, exit_code)``.

    Uses the last status line, so commands that happen to print the token
    themselves cannot spoof the result. Returns ``None`` for the exit code
    when no status line is present (the wrapper never ran).
    """
    match = None
    for match in _STATUS_LINE_RE.finditer(text):
        pass
    if match is None:
        return text, None

    output = text[: match.start()]
    # The wrapper's own newline was consumed by the match; drop the command's
    # final newline so "echo hi" yields "hi".
    if output.endswith("\n"):
        output = output[:-1]
    return output, int(match.group(1))
