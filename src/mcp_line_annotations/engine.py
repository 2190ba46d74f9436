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

"""Annotation engine: owns the in-memory annotations of every file.

The engine never touches the disk. It reads document text through a
TextSnapshotSource and tells its listeners when something should be
persisted or shown to the user.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Mapping, Sequence

from mcp_line_annotations.models import (
    AnchorResult,
    Annotation,
    AnnotationUnresolved,
    DocumentChangeEvent,
    EngineEvent,
    Matched,
    PersistRequested,
    TagIndex,
)
from mcp_line_annotations.reconciler import resolve_all
from mcp_line_annotations.snapshot_policy import SnapshotUpdatePolicy
from mcp_line_annotations.tag_graph import build_tag_index
from mcp_line_annotations.text_source import TextSnapshotSource

logger = logging.getLogger(__name__)

Listener = Callable[[EngineEvent], None]


class AnnotationEngine:
    """Keeps line annotations anchored while their files are edited."""

    def __init__(
        self,
        text_source: TextSnapshotSource,
        annotations_by_file: Mapping[str, Sequence[Annotation]] | None = None,
        debounce_seconds: float = 0.3,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._text_source = text_source
        self._policy = SnapshotUpdatePolicy(debounce_seconds, clock)
        self._listeners: list[Listener] = []
        self._annotations: dict[str, list[Annotation]] = {}
        self.tag_index = TagIndex()
        self.replace_all(annotations_by_file or {})

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: EngineEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed on %s", type(event).__name__)

    def _changed(self, *file_paths: str, rebuild_tags: bool = True) -> None:
        if rebuild_tags:
            self.tag_index = build_tag_index(self._annotations)
        self._emit(PersistRequested(tuple(sorted(set(file_paths)))))

    # ------------------------------------------------------------------
    # Collection access
    # ------------------------------------------------------------------

    def replace_all(self, annotations_by_file: Mapping[str, Sequence[Annotation]]) -> None:
        """Swap in a freshly loaded annotation set and resolve it against current text."""
        self._annotations = {
            path: list(annotations)
            for path, annotations in annotations_by_file.items()
            if annotations
        }
        for file_path, annotations in self._annotations.items():
            results = resolve_all(annotations, self._text_source.get_lines(file_path))
            for annotation in annotations:
                annotation.mark(results[annotation.id])
        self.tag_index = build_tag_index(self._annotations)

    def all_annotations(self) -> dict[str, list[Annotation]]:
        return self._annotations

    def annotations_for(self, file_path: str) -> list[Annotation]:
        return list(self._annotations.get(file_path, []))

    def get_annotation(self, annotation_id: str) -> Annotation:
        for annotations in self._annotations.values():
            for annotation in annotations:
                if annotation.id == annotation_id:
                    return annotation
        raise KeyError(annotation_id)

    def _line_text(self, file_path: str, line: int) -> str:
        lines = self._text_source.get_lines(file_path)
        if lines is None:
            raise ValueError(f"text of '{file_path}' is not available")
        if not 0 <= line < len(lines):
            raise ValueError(f"line {line} out of range (file has {len(lines)} lines)")
        return lines[line].strip()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_annotation(self, file_path: str, line: int, body: str) -> Annotation:
        """Annotate a line, replacing the annotation currently shown there."""
        snapshot = self._line_text(file_path, line)
        if not snapshot:
            logger.warning("Annotating blank line %d of %s: it will never resolve", line, file_path)

        existing = self._annotations.setdefault(file_path, [])
        results = self.resolve_all(file_path)
        existing[:] = [
            a for a in existing
            if not (isinstance(results.get(a.id), Matched) and results[a.id].line == line)
        ]
        annotation = Annotation(
            file_path=file_path,
            stored_line=line,
            content_snapshot=snapshot,
            body=body,
        )
        existing.append(annotation)
        self.resolve_all(file_path)
        self._changed(file_path)
        return annotation

    def edit_annotation(self, annotation_id: str, body: str) -> Annotation:
        annotation = self.get_annotation(annotation_id)
        annotation.body = body
        annotation.updated_at = time.time()
        self._changed(annotation.file_path)
        return annotation

    def reanchor_annotation(self, annotation_id: str, line: int) -> Annotation:
        """Bind an annotation to a line chosen by the user, taking its text as snapshot."""
        annotation = self.get_annotation(annotation_id)
        annotation.content_snapshot = self._line_text(annotation.file_path, line)
        annotation.stored_line = line
        annotation.updated_at = time.time()
        self.resolve_all(annotation.file_path)
        self._changed(annotation.file_path)
        return annotation

    def remove_annotation(self, annotation_id: str) -> bool:
        for file_path, annotations in list(self._annotations.items()):
            for i, annotation in enumerate(annotations):
                if annotation.id == annotation_id:
                    del annotations[i]
                    if not annotations:
                        del self._annotations[file_path]
                        self._policy.discard(file_path)
                    self._changed(file_path)
                    return True
        return False

    def remove_annotation_at(self, file_path: str, line: int) -> bool:
        """Remove the annotation currently resolved on a line, if any."""
        for annotation_id, result in self.resolve_all(file_path).items():
            if isinstance(result, Matched) and result.line == line:
                return self.remove_annotation(annotation_id)
        return False

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_all(self, file_path: str) -> dict[str, AnchorResult]:
        """Resolve a file's annotations against its current text.

        Read-only with respect to positions: only the derived ``matched``
        flags and resolved lines are updated (and the tag index with them).
        Stored lines and snapshots move exclusively through change
        notifications.
        """
        annotations = self._annotations.get(file_path, [])
        results = resolve_all(annotations, self._text_source.get_lines(file_path))
        moved = False
        for annotation in annotations:
            moved = annotation.mark(results[annotation.id]) or moved
        if moved:
            self.tag_index = build_tag_index(self._annotations)
        return results

    def notify_change(
        self,
        file_path: str,
        event: DocumentChangeEvent,
        recent_input: bool,
        now: float | None = None,
        previous_lines: list[str] | None = None,
    ) -> list[str]:
        """Feed a document change notification through the update policy.

        The text source must already hold the edited text. ``previous_lines``
        is the text just before the edit; without it the lines of the last
        resolve stand in for the annotations' current positions.

        Returns:
            Ids of annotations refreshed immediately on the fast path.
        """
        annotations = self._annotations.get(file_path)
        if not annotations:
            return []
        refreshed = self._policy.handle_change(
            file_path,
            annotations,
            event,
            recent_input,
            self._text_source.get_lines(file_path),
            previous_lines=previous_lines,
            now=now,
        )
        if refreshed:
            logger.debug("Refreshed %d snapshots in %s", len(refreshed), file_path)
            self._changed(file_path)
        return refreshed

    @property
    def next_deadline(self) -> float | None:
        return self._policy.deadline

    @property
    def pending_files(self) -> frozenset[str]:
        return self._policy.pending_files

    def tick(self, now: float | None = None) -> list[str]:
        """Reconcile the files whose debounce window elapsed."""
        files = self._policy.due(now)
        for file_path in files:
            self._reconcile_file(file_path)
        return files

    def flush(self) -> list[str]:
        """Reconcile every pending file immediately."""
        files = self._policy.drain()
        for file_path in files:
            self._reconcile_file(file_path)
        return files

    def _reconcile_file(self, file_path: str) -> None:
        annotations = self._annotations.get(file_path)
        if not annotations:
            return
        outcome = self._policy.reconcile(annotations, self._text_source.get_lines(file_path))

        for event in outcome.repositioned:
            self._emit(event)
        for annotation_id in outcome.newly_unresolved:
            self._emit(AnnotationUnresolved(annotation_id=annotation_id, file_path=file_path))

        self.tag_index = build_tag_index(self._annotations)
        logger.info(
            "Reconciled %s: %d changed, %d moved, %d newly unresolved",
            file_path,
            len(outcome.changed),
            len(outcome.repositioned),
            len(outcome.newly_unresolved),
        )
        if outcome.needs_persist:
            self._changed(file_path, rebuild_tags=False)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> dict:
        return {
            "files": len(self._annotations),
            "annotations": sum(len(a) for a in self._annotations.values()),
            "per_file": {path: len(a) for path, a in sorted(self._annotations.items())},
            "tag_declarations": len(self.tag_index.declarations),
            "tag_references": len(self.tag_index.references),
            "tags": sorted(self.tag_index.declarations),
        }
