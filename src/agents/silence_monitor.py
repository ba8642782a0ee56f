"""Caller-inactivity detection for a single session.

The monitor is a small state machine::

    IDLE --start--> ARMED --timeout (retries left)--> ARMED
                    ARMED --reset--> ARMED
                    ARMED --timeout (retries exhausted)--> ESCALATED
    ARMED | ESCALATED --cleanup--> STOPPED

``check`` performs the timeout transition for a given instant and is what the
background watcher calls; tests drive it directly with an injected clock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from agents.schemas import SilenceState

LOGGER = logging.getLogger(__name__)

DEFAULT_REENGAGEMENT_MESSAGES = (
    "Still there?",
    "Just checking you are still there?",
)


@dataclass
class SilenceTimerState:
    last_activity: float
    soft_threshold: float
    retry_limit: int
    timeouts: int = 0


@dataclass(frozen=True)
class SilenceEvent:
    message: str
    timeouts: int
    escalated: bool = False


SilenceCallback = Callable[[SilenceEvent], None]


class SilenceMonitor:
    def __init__(
        self,
        soft_threshold: float,
        retry_limit: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        messages: Sequence[str] = DEFAULT_REENGAGEMENT_MESSAGES,
        label: str = "",
    ) -> None:
        if soft_threshold <= 0:
            raise ValueError("soft_threshold must be positive.")
        if retry_limit < 0:
            raise ValueError("retry_limit must not be negative.")

        self._clock = clock
        self._messages = tuple(messages) or DEFAULT_REENGAGEMENT_MESSAGES
        self._label = label
        self._timer = SilenceTimerState(
            last_activity=clock(), soft_threshold=soft_threshold, retry_limit=retry_limit
        )
        self._state = SilenceState.IDLE
        self._on_timeout: SilenceCallback | None = None
        self._watcher: asyncio.Task | None = None

    @property
    def state(self) -> SilenceState:
        return self._state

    @property
    def timer(self) -> SilenceTimerState:
        return self._timer

    def start_monitoring(self, on_timeout: SilenceCallback, *, watch: bool = True) -> None:
        """Arm the timer; with ``watch`` a background task fires timeouts."""

        if self._state is not SilenceState.IDLE:
            LOGGER.debug("%s Silence monitor already started (%s)", self._label, self._state.value)
            return

        self._on_timeout = on_timeout
        self._timer.last_activity = self._clock()
        self._timer.timeouts = 0
        self._state = SilenceState.ARMED
        if watch:
            self._watcher = asyncio.create_task(self._watch())

    def reset_timer(self, frame_type: str | None = None) -> None:
        if self._state is SilenceState.ARMED:
            self._timer.last_activity = self._clock()
            self._timer.timeouts = 0
            LOGGER.debug("%s Silence timer reset by %s frame", self._label, frame_type)
        elif self._state is SilenceState.IDLE:
            self._timer.last_activity = self._clock()

    def seconds_until_timeout(self, now: float | None = None) -> float:
        now = self._clock() if now is None else now
        return self._timer.last_activity + self._timer.soft_threshold - now

    def check(self, now: float | None = None) -> SilenceEvent | None:
        """Apply a timeout transition if the soft threshold has elapsed."""

        if self._state is not SilenceState.ARMED:
            return None
        now = self._clock() if now is None else now
        if self.seconds_until_timeout(now) > 0:
            return None

        self._timer.timeouts += 1
        self._timer.last_activity = now
        LOGGER.info(
            "%s No caller activity for %ss (timeout %s, retry limit %s)",
            self._label,
            self._timer.soft_threshold,
            self._timer.timeouts,
            self._timer.retry_limit,
        )

        if self._timer.timeouts > self._timer.retry_limit:
            self._state = SilenceState.ESCALATED
            event = SilenceEvent(
                message="The caller was not speaking",
                timeouts=self._timer.timeouts,
                escalated=True,
            )
        else:
            index = min(self._timer.timeouts, len(self._messages)) - 1
            event = SilenceEvent(message=self._messages[index], timeouts=self._timer.timeouts)

        if self._on_timeout is not None:
            try:
                self._on_timeout(event)
            except Exception:
                LOGGER.exception("%s Silence callback failed", self._label)
        return event

    async def _watch(self) -> None:
        while self._state is SilenceState.ARMED:
            delay = self.seconds_until_timeout()
            if delay > 0:
                await asyncio.sleep(delay)
                continue
            self.check()

    def cleanup(self) -> None:
        if self._state is SilenceState.STOPPED:
            return
        if self._state is not SilenceState.IDLE:
            LOGGER.info("%s Cleaning up silence monitor", self._label)
        self._state = SilenceState.STOPPED
        self._on_timeout = None
        if self._watcher is not None:
            if self._watcher is not asyncio.current_task():
                self._watcher.cancel()
            self._watcher = None
