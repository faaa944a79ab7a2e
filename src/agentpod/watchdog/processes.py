"""In-session process listing via ``ps``."""

from __future__ import annotations

import subprocess

from agentpod.types import ProcessInfo

_PS_ARGS = ["ps", "-eo", "pid=,comm=,args="]


class ProcessListError(Exception):
    """``ps`` could not be run or returned an error."""


def parse_ps_output(text: str) -> list[ProcessInfo]:
    """Parse ``ps -eo pid=,comm=,args=`` output.

    ``comm`` is the kernel's short executable name (no spaces for anything
    we care about); ``args`` is the full command line, whitespace-split.
    """
    processes: list[ProcessInfo] = []
    for line in text.splitlines():
        parts = line.split(None, 2)
        if len(parts) < 2 or not parts[0].isdigit():
            continue
        args = parts[2].split() if len(parts) == 3 else []
        processes.append(ProcessInfo(pid=int(parts[0]), name=parts[1], args=args))
    return processes


def list_processes(*, timeout: float = 10) -> list[ProcessInfo]:
    try:
        result = subprocess.run(
            _PS_ARGS,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as exc:
        raise ProcessListError(f"ps failed: {exc}") from exc
    if result.returncode != 0:
        raise ProcessListError(f"ps exited {result.returncode}: {result.stderr.strip()}")
    return parse_ps_output(result.stdout)
