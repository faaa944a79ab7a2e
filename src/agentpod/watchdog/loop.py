"""The idle watchdog's polling loop.

State machine::

    active <-> idle -> terminated

Every tick lists processes and classifies them. Activity resets the idle
clock; otherwise the session terminates once the time since the last
activity exceeds the idle timeout. ``terminated`` is absorbing.

Only the tick reads or writes the state, and the loop is single-threaded.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from agentpod.logger import logger
from agentpod.types import ProcessInfo, WatchdogPhase
from agentpod.watchdog.classify import ActivityClassifier
from agentpod.watchdog.processes import ProcessListError, list_processes


@dataclass
class WatchdogState:
    last_activity: float
    strict_mode: bool
    phase: WatchdogPhase = "active"


class IdleWatchdog:
    def __init__(
        self,
        classifier: ActivityClassifier,
        *,
        idle_timeout: float,
        poll_interval: float,
        strict_mode: bool,
        lister: Callable[[], list[ProcessInfo]] = list_processes,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.classifier = classifier
        self.idle_timeout = idle_timeout
        self.poll_interval = poll_interval
        self._lister = lister
        self._clock = clock
        self._sleep = sleep
        self.state = WatchdogState(last_activity=clock(), strict_mode=strict_mode)

    def tick(self) -> WatchdogPhase:
        """Observe once and advance the state machine."""
        state = self.state
        if state.phase == "terminated":
            return state.phase

        now = self._clock()
        try:
            processes = self._lister()
        except ProcessListError as exc:
            # Unobservable tick: neither evidence of activity nor of idleness
            logger.warning("Process listing failed, skipping tick", err=str(exc))
            return state.phase

        if self.classifier(processes):
            if state.phase != "active":
                logger.info("Agent active")
            state.last_activity = now
            state.phase = "active"
            return state.phase

        elapsed = now - state.last_activity
        if elapsed > self.idle_timeout:
            logger.info(
                "Idle timeout exceeded",
                idle_seconds=round(elapsed, 1),
                idle_timeout=self.idle_timeout,
                strict=state.strict_mode,
            )
            state.phase = "terminated"
        elif state.phase == "active":
            logger.info("Agent idle", strict=state.strict_mode)
            state.phase = "idle"
        return state.phase

    def run(self) -> None:
        """Poll until terminated. Returns only on sustained idleness."""
        logger.info(
            "Idle watchdog started",
            idle_timeout=self.idle_timeout,
            poll_interval=self.poll_interval,
            strict=self.state.strict_mode,
        )
        while self.tick() != "terminated":
            self._sleep(self.poll_interval)
