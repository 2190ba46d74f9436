"""Data models for line annotations, anchor results, and the tag index."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Union


def new_annotation_id() -> str:
    """Opaque, unique, orderable annotation identifier."""
    return uuid.uuid4().hex


@dataclass
class Annotation:
    """A free-text note bound to one line of a text file."""

    file_path: str
    stored_line: int  # 0-indexed, meaningful only while matched
    content_snapshot: str  # Trimmed text of the line last anchored to
    body: str
    id: str = field(default_factory=new_annotation_id)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    # Derived on every resolve, never trusted from disk
    matched: bool = False
    resolved_line: int | None = None  # Not persisted

    def mark(self, result: AnchorResult) -> bool:
        """Record a resolution. Returns True if the resolved line changed."""
        line = result.line if isinstance(result, Matched) else None
        changed = line != self.resolved_line
        self.matched = line is not None
        self.resolved_line = line
        return changed


@dataclass(frozen=True)
class Matched:
    """Anchor resolved to a line (0-indexed)."""

    line: int

    @property
    def matched(self) -> bool:
        return True


@dataclass(frozen=True)
class Unresolved:
    """No reliable line was found for an annotation."""

    reason: str  # missing_snapshot, generic_snapshot, not_found, source_unavailable

    @property
    def matched(self) -> bool:
        return False


AnchorResult = Union[Matched, Unresolved]


@dataclass(frozen=True)
class DocumentChange:
    """One edited range of a document (0-indexed lines, pre-change coordinates)."""

    start_line: int
    end_line: int
    inserted_text: str = ""

    @property
    def is_structural(self) -> bool:
        """True if the change can move line indices."""
        return self.start_line != self.end_line or "\n" in self.inserted_text


@dataclass(frozen=True)
class DocumentChangeEvent:
    """A batch of edits to one document, as reported by the host."""

    changes: list[DocumentChange]
    timestamp: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class Declaration:
    """A `$name` tag declared in an annotation body."""

    tag_name: str
    file_path: str
    line: int | None  # Resolved line, None while unresolved
    annotation_id: str
    body: str


@dataclass(frozen=True)
class Reference:
    """An `@name` tag referenced in an annotation body."""

    tag_name: str
    file_path: str
    line: int | None
    annotation_id: str
    span: tuple[int, int]  # Offsets in the body, end exclusive


@dataclass(frozen=True)
class TagIndex:
    """Immutable snapshot of all tag declarations and references."""

    declarations: Mapping[str, Declaration] = field(
        default_factory=lambda: MappingProxyType({})
    )
    references: tuple[Reference, ...] = ()


# ---------------------------------------------------------------------------
# Engine events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AnnotationRepositioned:
    annotation_id: str
    file_path: str
    old_line: int
    new_line: int


@dataclass(frozen=True)
class AnnotationUnresolved:
    annotation_id: str
    file_path: str


@dataclass(frozen=True)
class PersistRequested:
    """At least one annotation in these files changed and should be saved."""

    file_paths: tuple[str, ...]


EngineEvent = Union[AnnotationRepositioned, AnnotationUnresolved, PersistRequested]
