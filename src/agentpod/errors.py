"""Error taxonomy.

Every failure the core can produce maps to one exception class with a stable
process exit code, so pipeline automation can branch on ``$?`` without parsing
log output. Nothing here is retried automatically.
"""

from __future__ import annotations


class AgentpodError(Exception):
    """Base class. ``exit_code`` is what the CLI exits with."""

    exit_code: int = 1


class InvalidInputError(AgentpodError):
    """Bad parameters, detected before any engine call."""

    exit_code = 2


class PreconditionFailedError(AgentpodError):
    """The host environment is not ready (e.g. missing AWS credential store)."""

    exit_code = 3


class EngineError(AgentpodError):
    """The container engine rejected or failed an operation.

    ``engine_exit_code`` is the engine CLI's own status, kept for diagnostics;
    the process exit code stays fixed so callers can tell engine failures
    apart from the other categories.
    """

    exit_code = 4

    def __init__(self, message: str, *, engine_exit_code: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.engine_exit_code = engine_exit_code
        self.stderr = stderr


class ReadinessTimeoutError(AgentpodError):
    """The session was created but never observed running within the bound."""

    exit_code = 5

    def __init__(self, message: str, *, diagnostics: str = ""):
        super().__init__(message)
        self.diagnostics = diagnostics


class ExecutionTimeoutError(AgentpodError):
    """A dispatched command exceeded its wall-clock limit."""

    exit_code = 124
