"""Session lifecycle and command execution.

Usage::

    manager = SessionManager(engine, settings.session_config())
    session = await manager.ensure_running("ci-123", "/repo", Credentials(api_key=key))
    result = await CommandExecutor(engine, settings.exec_config()).run(session.id, "make test")
"""

from agentpod.session.executor import CommandExecutor
from agentpod.session.lifecycle import SessionManager

__all__ = [
    "CommandExecutor",
    "SessionManager",
]
