"""agentpod: container sessions for a non-interactive coding agent."""

__version__ = "0.1.0"
