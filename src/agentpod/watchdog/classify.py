"""Agent activity classification from a process listing.

Two strategies, picked once at watchdog startup:

  strict      only scripted, single-prompt invocations (``claude -p ...``)
              count as activity; an interactive ``claude`` left open in the
              session does not keep it alive
  non-strict  any process of the agent executable counts
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from agentpod.types import ProcessInfo

DEFAULT_AGENT_EXECUTABLE = "claude"
NON_INTERACTIVE_FLAGS = frozenset({"-p", "--print"})


class ActivityClassifier(Protocol):
    def __call__(self, processes: Sequence[ProcessInfo]) -> bool: ...


def is_agent_process(proc: ProcessInfo, executable: str) -> bool:
    """Match by short name, or by argv[0]/argv[1] basename for node-launched CLIs."""
    if proc.name == executable:
        return True
    return any(os.path.basename(arg) == executable for arg in proc.args[:2])


def has_non_interactive_flag(proc: ProcessInfo) -> bool:
    return any(arg in NON_INTERACTIVE_FLAGS for arg in proc.args[1:])


@dataclass(frozen=True)
class StrictClassifier:
    executable: str = DEFAULT_AGENT_EXECUTABLE

    def __call__(self, processes: Sequence[ProcessInfo]) -> bool:
        return any(
            is_agent_process(p, self.executable) and has_non_interactive_flag(p)
            for p in processes
        )


@dataclass(frozen=True)
class NonStrictClassifier:
    executable: str = DEFAULT_AGENT_EXECUTABLE

    def __call__(self, processes: Sequence[ProcessInfo]) -> bool:
        return any(is_agent_process(p, self.executable) for p in processes)


def classifier_for(strict: bool, executable: str = DEFAULT_AGENT_EXECUTABLE) -> ActivityClassifier:
    return StrictClassifier(executable) if strict else NonStrictClassifier(executable)
