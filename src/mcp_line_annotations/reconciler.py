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

"""Resolve every annotation of one file in a single collision-free pass."""

from __future__ import annotations

import logging
from typing import Sequence

from mcp_line_annotations.anchor_matcher import resolve
from mcp_line_annotations.models import AnchorResult, Annotation, Matched, Unresolved

logger = logging.getLogger(__name__)


def _is_stable(annotation: Annotation, lines: Sequence[str]) -> bool:
    """True if the stored line still carries the remembered text."""
    snapshot = (annotation.content_snapshot or "").strip()
    line = annotation.stored_line
    return bool(snapshot) and 0 <= line < len(lines) and lines[line].strip() == snapshot


def processing_order(
    annotations: Sequence[Annotation], lines: Sequence[str]
) -> list[Annotation]:
    """Stable anchors first, then oldest first; id breaks remaining ties."""
    return sorted(
        annotations,
        key=lambda a: (0 if _is_stable(a, lines) else 1, a.created_at, a.id),
    )


def resolve_all(
    annotations: Sequence[Annotation],
    lines: Sequence[str] | None,
) -> dict[str, AnchorResult]:
    """Resolve all annotations of a file so that no two share a line.

    Args:
        annotations: The file's annotations. Not mutated.
        lines: Current document lines, or None if the text is unavailable,
            in which case every annotation is reported unresolved.

    Returns:
        Mapping of annotation id to Matched/Unresolved, in input order.
    """
    if lines is None:
        return {a.id: Unresolved("source_unavailable") for a in annotations}

    claimed: set[int] = set()
    results: dict[str, AnchorResult] = {}
    for annotation in processing_order(annotations, lines):
        result = resolve(annotation, lines, claimed)
        if isinstance(result, Matched):
            claimed.add(result.line)
        results[annotation.id] = result

    unresolved = sum(1 for r in results.values() if not r.matched)
    logger.debug(
        "Resolved %d annotations (%d unresolved) against %d lines",
        len(results),
        unresolved,
        len(lines),
    )
    return {a.id: results[a.id] for a in annotations}
