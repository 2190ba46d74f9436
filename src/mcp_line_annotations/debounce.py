"""Cancel-and-restart debounce modelled as an explicit state machine.

States are ``Idle`` and ``PendingReconcile(deadline)``. ``edit_observed``
moves to (or stays in) the pending state with a fresh deadline; ``poll``
fires once the deadline has elapsed and returns to ``Idle``. The host only
has to call ``poll`` at or after ``deadline``; nothing here depends on a
particular event loop's timer semantics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class PendingReconcile:
    deadline: float


DebounceState = Union[Idle, PendingReconcile]


class DebounceTimer:
    """Single deferred reconciliation, restarted by every qualifying edit."""

    def __init__(self, quiet_seconds: float = 0.3):
        self.quiet_seconds = quiet_seconds
        self.state: DebounceState = Idle()

    @property
    def pending(self) -> bool:
        return isinstance(self.state, PendingReconcile)

    @property
    def deadline(self) -> float | None:
        if isinstance(self.state, PendingReconcile):
            return self.state.deadline
        return None

    def edit_observed(self, now: float) -> float:
        """Restart the quiet window. Returns the new deadline."""
        self.state = PendingReconcile(now + self.quiet_seconds)
        return self.state.deadline

    def poll(self, now: float) -> bool:
        """Fire if the deadline elapsed. Returns True exactly once per window."""
        if isinstance(self.state, PendingReconcile) and now >= self.state.deadline:
            self.state = Idle()
            return True
        return False

    def cancel(self) -> None:
        self.state = Idle()
