"""Recent-user-input signal."""

from __future__ import annotations

import time
from typing import Callable


class InputActivityTracker:
    """Remembers when the host last saw genuine interactive input.

    Document changes are only treated as edits while the last recorded input
    lies within ``window_seconds`` of the change.
    """

    def __init__(
        self,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self._clock = clock
        self._last_input: float | None = None

    def record_input(self, now: float | None = None) -> None:
        self._last_input = self._clock() if now is None else now

    def is_recent(self, now: float | None = None) -> bool:
        if self._last_input is None:
            return False
        now = self._clock() if now is None else now
        return 0 <= now - self._last_input <= self.window_seconds
