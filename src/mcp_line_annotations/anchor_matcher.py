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

"""Resolve a single annotation to a line of the current document.

Matching is exact, case-sensitive, whitespace-trimmed string equality. The
search only looks at the stored line, its immediate neighbours, and a small
window whose radius depends on how distinctive the remembered text is and on
the size of the file. There is deliberately no whole-document scan and no
similarity fallback: an unresolved annotation is preferable to one shown on
the wrong line.
"""

from __future__ import annotations

import logging
import re
from typing import AbstractSet, Sequence

from mcp_line_annotations.models import AnchorResult, Annotation, Matched, Unresolved

logger = logging.getLogger(__name__)

_PUNCTUATION_ONLY = frozenset("{}();,[]")
_GENERIC_KEYWORDS = frozenset({"else", "try", "catch", "finally", "do", "then"})
_BARE_NUMBER_RE = re.compile(r"^[-+]?\d+(?:\.\d+)?$")
_TRIVIAL_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_]\w*\s*=\s*[-+]?\d+(?:\.\d+)?\s*;?$")
_IDENTIFIER_CHAR_RE = re.compile(r"\w")


def is_too_generic(snapshot: str) -> bool:
    """Return True if a trimmed line recurs too often to anchor reliably."""
    text = snapshot.strip()
    if not text:
        return True
    if len(text) <= 2 and all(ch in _PUNCTUATION_ONLY for ch in text):
        return True
    if text in _GENERIC_KEYWORDS:
        return True
    if _BARE_NUMBER_RE.match(text) or _TRIVIAL_ASSIGNMENT_RE.match(text):
        return True
    if len(text) < 5 and not _IDENTIFIER_CHAR_RE.search(text):
        return True
    return False


def complexity_score(text: str) -> float:
    """Weighted distinctiveness of a line, in [0, 1]."""
    if not text:
        return 0.0
    length_part = min(len(text) / 50, 0.3)
    alnum_part = sum(1 for ch in text if ch.isalnum()) / len(text) * 0.3
    specials = {ch for ch in text if not ch.isalnum() and not ch.isspace()}
    special_part = min(len(specials) / 10, 0.2)
    word_part = min(len(text.split()) / 10, 0.2)
    return length_part + alnum_part + special_part + word_part


def search_radius(text: str, total_lines: int) -> int:
    """Window radius: the smaller of the complexity and file-size limits."""
    score = complexity_score(text)
    if score > 0.8:
        by_complexity = 10
    elif score > 0.5:
        by_complexity = 5
    else:
        by_complexity = 2

    if total_lines <= 100:
        by_size = 3
    elif total_lines <= 500:
        by_size = 8
    else:
        by_size = 15

    return min(by_complexity, by_size)


def resolve(
    annotation: Annotation,
    lines: Sequence[str],
    claimed: AbstractSet[int] = frozenset(),
) -> AnchorResult:
    """Find the line an annotation belongs to, or report it unresolved.

    Args:
        annotation: The annotation to place.
        lines: Current document lines (0-indexed).
        claimed: Lines already taken by other annotations in the same batch.
            They are never returned.
    """
    snapshot = (annotation.content_snapshot or "").strip()
    if not snapshot:
        logger.debug("Annotation %s has no content snapshot", annotation.id)
        return Unresolved("missing_snapshot")
    if is_too_generic(snapshot):
        return Unresolved("generic_snapshot")

    total = len(lines)
    origin = annotation.stored_line

    def hit(line: int) -> bool:
        return 0 <= line < total and line not in claimed and lines[line].strip() == snapshot

    # Stored position, then the single-line shift in either direction
    for candidate in (origin, origin - 1, origin + 1):
        if hit(candidate):
            return Matched(candidate)

    radius = search_radius(snapshot, total)
    for distance in range(2, radius + 1):
        for candidate in (origin - distance, origin + distance):
            if hit(candidate):
                return Matched(candidate)

    return Unresolved("not_found")
