"""Idle watchdog. Runs inside the session and ends it after sustained idleness.

Started as the session's main command (``python -m agentpod.watchdog``)
behind the engine's init process, so when :func:`main` returns the session
stops. It has no caller to hand it configuration, so it reads its own from
the environment once at startup.
"""

from __future__ import annotations

import sys

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentpod.logger import configure, logger
from agentpod.watchdog.classify import DEFAULT_AGENT_EXECUTABLE, classifier_for
from agentpod.watchdog.loop import IdleWatchdog, WatchdogState

__all__ = [
    "IdleWatchdog",
    "WatchdogSettings",
    "WatchdogState",
    "build_watchdog",
    "main",
]


class WatchdogSettings(BaseSettings):
    """``AGENTPOD_*`` environment injected at session creation."""

    model_config = SettingsConfigDict(env_prefix="AGENTPOD_", extra="ignore")

    idle_timeout: int = 300  # seconds
    strict_mode: bool = True
    poll_interval: float = 5.0  # seconds
    agent_executable: str = DEFAULT_AGENT_EXECUTABLE

    @field_validator("idle_timeout", "poll_interval")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @model_validator(mode="after")
    def _poll_within_timeout(self) -> WatchdogSettings:
        # Activity must be able to reset the clock many times per window
        if self.poll_interval >= self.idle_timeout:
            raise ValueError("poll_interval must be shorter than idle_timeout")
        return self


def build_watchdog(settings: WatchdogSettings) -> IdleWatchdog:
    return IdleWatchdog(
        classifier_for(settings.strict_mode, settings.agent_executable),
        idle_timeout=settings.idle_timeout,
        poll_interval=settings.poll_interval,
        strict_mode=settings.strict_mode,
    )


def main() -> None:
    configure("watchdog", json=True)
    try:
        settings = WatchdogSettings()
    except ValidationError as exc:
        logger.error("Invalid watchdog configuration", err=str(exc))
        sys.exit(2)

    build_watchdog(settings).run()
    logger.info("Ending session after idle timeout")
    sys.exit(0)
