# mcp-line-annotations - Line-anchored annotations with MCP server
# Copyright (C) 2026 Michael Doyle
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.
#
# Commercial licensing available. See COMMERCIAL-LICENSE.md for details.

"""Decide when annotation snapshots are refreshed after document edits.

Two paths:

- Line-count-preserving edits (one line, no newline inserted) that touch the
  line an annotation currently resolves to refresh its snapshot immediately,
  since no line index moved. "Currently" means against the text as it was
  just before the edit, not the possibly stale stored line.
- Structural edits mark the file pending and restart a debounce window;
  once the window elapses the whole file is reconciled in one pass.

Nothing at all is mutated unless the host reports genuine recent user
input. A checkout or other bulk rewrite arrives without that signal and
must not be mistaken for a sequence of edits.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from mcp_line_annotations.debounce import DebounceTimer
from mcp_line_annotations.models import (
    AnchorResult,
    Annotation,
    AnnotationRepositioned,
    DocumentChange,
    DocumentChangeEvent,
    Matched,
)
from mcp_line_annotations.reconciler import resolve_all

logger = logging.getLogger(__name__)


@dataclass
class ReconcileOutcome:
    """What one reconciliation pass did to a file's annotations."""

    results: dict[str, AnchorResult] = field(default_factory=dict)
    changed: list[str] = field(default_factory=list)  # ids with new line or snapshot
    repositioned: list[AnnotationRepositioned] = field(default_factory=list)
    newly_unresolved: list[str] = field(default_factory=list)

    @property
    def needs_persist(self) -> bool:
        return bool(self.changed)


class SnapshotUpdatePolicy:
    """Fast-path snapshot refresh plus debounced reconciliation."""

    def __init__(
        self,
        debounce_seconds: float = 0.3,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._timer = DebounceTimer(debounce_seconds)
        self._pending_files: set[str] = set()
        self._clock = clock

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    @property
    def deadline(self) -> float | None:
        """Monotonic time at which pending files become due, if any."""
        return self._timer.deadline

    @property
    def pending_files(self) -> frozenset[str]:
        return frozenset(self._pending_files)

    def discard(self, file_path: str) -> None:
        """Forget a pending reconciliation for one file."""
        self._pending_files.discard(file_path)
        if not self._pending_files:
            self._timer.cancel()

    def due(self, now: float | None = None) -> list[str]:
        """Files whose quiet window has elapsed. Clears them from pending."""
        if not self._timer.poll(self._clock() if now is None else now):
            return []
        files = sorted(self._pending_files)
        self._pending_files.clear()
        return files

    def drain(self) -> list[str]:
        """All pending files regardless of the deadline."""
        files = sorted(self._pending_files)
        self._pending_files.clear()
        self._timer.cancel()
        return files

    # ------------------------------------------------------------------
    # Change handling
    # ------------------------------------------------------------------

    def handle_change(
        self,
        file_path: str,
        annotations: Sequence[Annotation],
        event: DocumentChangeEvent,
        recent_input: bool,
        lines: Sequence[str] | None,
        previous_lines: Sequence[str] | None = None,
        now: float | None = None,
    ) -> list[str]:
        """React to one change notification.

        Args:
            lines: Document text after the change.
            previous_lines: Document text before the change. Used to find the
                line each annotation sits on right now; when omitted, the
                line of the last resolve is used instead.

        Returns:
            Ids of annotations whose snapshot was refreshed on the fast path.
        """
        now = self._clock() if now is None else now
        if not recent_input:
            if file_path in self._pending_files:
                logger.info(
                    "Dropping pending reconciliation of %s: content replaced "
                    "without user input",
                    file_path,
                )
            else:
                logger.debug("Ignoring change to %s without user input", file_path)
            self.discard(file_path)
            return []

        # A pending structural edit means stored lines may be stale, so
        # further edits join the batch instead of taking the fast path.
        if file_path in self._pending_files or any(
            change.is_structural for change in event.changes
        ):
            self._schedule(file_path, now)
            return []

        if lines is None:
            return []
        anchored = self._current_lines(annotations, previous_lines)
        refreshed = self._refresh_edited_lines(annotations, event.changes, lines, anchored)

        # Text moved under the annotations without user input earlier on
        # (checkout, external rewrite): bring stored lines up to date.
        if any(
            anchored.get(a.id) is not None and anchored[a.id] != a.stored_line
            for a in annotations
        ):
            logger.info("Stored lines of %s are stale, scheduling reconciliation", file_path)
            self._schedule(file_path, now)
        return refreshed

    def _schedule(self, file_path: str, now: float) -> None:
        self._pending_files.add(file_path)
        self._timer.edit_observed(now)

    @staticmethod
    def _current_lines(
        annotations: Sequence[Annotation],
        previous_lines: Sequence[str] | None,
    ) -> dict[str, int | None]:
        if previous_lines is None:
            return {a.id: a.resolved_line for a in annotations}
        return {
            annotation_id: result.line if isinstance(result, Matched) else None
            for annotation_id, result in resolve_all(annotations, previous_lines).items()
        }

    @staticmethod
    def _refresh_edited_lines(
        annotations: Sequence[Annotation],
        changes: Sequence[DocumentChange],
        lines: Sequence[str],
        anchored: dict[str, int | None],
    ) -> list[str]:
        refreshed: list[str] = []
        for annotation in annotations:
            line = anchored.get(annotation.id)
            if line is None or not 0 <= line < len(lines):
                continue
            if not any(c.start_line <= line <= c.end_line for c in changes):
                continue
            live = lines[line].strip()
            if not live:
                continue
            if live != annotation.content_snapshot or line != annotation.stored_line:
                annotation.content_snapshot = live
                annotation.stored_line = line
                annotation.mark(Matched(line))
                refreshed.append(annotation.id)
        return refreshed

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(
        self,
        annotations: Sequence[Annotation],
        lines: Sequence[str] | None,
    ) -> ReconcileOutcome:
        """Resolve all annotations of a file and apply the new positions."""
        outcome = ReconcileOutcome(results=resolve_all(annotations, lines))

        for annotation in annotations:
            result = outcome.results[annotation.id]
            if not isinstance(result, Matched):
                if annotation.matched:
                    outcome.newly_unresolved.append(annotation.id)
                annotation.mark(result)
                continue

            old_line = annotation.stored_line
            live = lines[result.line].strip()
            if live != annotation.content_snapshot:
                annotation.content_snapshot = live
                annotation.stored_line = result.line
                outcome.changed.append(annotation.id)
            elif old_line != result.line:
                annotation.stored_line = result.line
                outcome.changed.append(annotation.id)

            if old_line != result.line:
                outcome.repositioned.append(
                    AnnotationRepositioned(
                        annotation_id=annotation.id,
                        file_path=annotation.file_path,
                        old_line=old_line,
                        new_line=result.line,
                    )
                )
            annotation.mark(result)

        return outcome
