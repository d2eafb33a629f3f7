from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from constants import MISSING_FRONTMOST_VALUES


class LingeringState(str, Enum):
    IDLE = "Idle"
    PRIMED = "Primed"


class LingeringVerdict(str, Enum):
    INVOKE = "invoke"
    NOT_PRIMED = "not_primed"
    INVALID_FOREGROUND = "invalid_foreground"


@dataclass
class LingeringStateMachine:
    """
    Two-sample debounce over the frontmost app/tab.

    The first unchanged observation primes the machine; a second consecutive
    unchanged observation means the user is lingering and the frame is worth
    scoring. Any switch, or this app being in front, drops back to IDLE.
    """

    self_app_names: Iterable[str] = ()
    state: LingeringState = LingeringState.IDLE

    def __post_init__(self) -> None:
        self._self_names = {name.strip().lower() for name in self.self_app_names}

    def is_invalid_foreground(self, frontmost_app: Optional[str]) -> bool:
        if frontmost_app is None:
            return True
        name = frontmost_app.strip().lower()
        return name in MISSING_FRONTMOST_VALUES or name in self._self_names

    def observe(self, frontmost_app: Optional[str], changed: bool) -> LingeringVerdict:
        if self.is_invalid_foreground(frontmost_app):
            self.state = LingeringState.IDLE
            return LingeringVerdict.INVALID_FOREGROUND

        if self.state == LingeringState.IDLE:
            if not changed:
                self.state = LingeringState.PRIMED
            return LingeringVerdict.NOT_PRIMED

        self.state = LingeringState.IDLE
        if changed:
            return LingeringVerdict.NOT_PRIMED
        return LingeringVerdict.INVOKE

    def reset(self) -> None:
        self.state = LingeringState.IDLE


class AlertThrottle:
    """Minimum spacing between user-visible alerts."""

    def __init__(self, cooldown_secs: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.cooldown_secs = cooldown_secs
        self._clock = clock
        self.last_alert_at: Optional[float] = None

    def cooldown_elapsed(self, now: Optional[float] = None) -> bool:
        if self.last_alert_at is None:
            return True
        now = self._clock() if now is None else now
        return now - self.last_alert_at >= self.cooldown_secs

    def mark_alert_shown(self, now: Optional[float] = None) -> None:
        self.last_alert_at = self._clock() if now is None else now
