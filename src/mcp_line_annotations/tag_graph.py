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

"""Cross-file tag symbol table built from annotation bodies.

``$name`` in a body declares a tag, ``@name`` references one. The index is
always rebuilt from scratch over the full annotation set, so deleted or
edited annotations never leave stale entries behind.
"""

from __future__ import annotations

import logging
import re
from types import MappingProxyType
from typing import Iterable, Mapping

from mcp_line_annotations.models import Annotation, Declaration, Reference, TagIndex

logger = logging.getLogger(__name__)

TAG_NAME_PATTERN = r"[A-Za-z_][A-Za-z0-9_]*"
_DECLARATION_RE = re.compile(r"\$(" + TAG_NAME_PATTERN + ")")
_REFERENCE_RE = re.compile(r"@(" + TAG_NAME_PATTERN + ")")
_PARTIAL_REFERENCE_RE = re.compile(r"@(" + TAG_NAME_PATTERN + ")?$")


def build_tag_index(
    annotations_by_file: Mapping[str, Iterable[Annotation]],
) -> TagIndex:
    """Scan every annotation body for tag declarations and references.

    Runs in time linear in the total body length. When two annotations
    declare the same name, the one processed last wins. Entries carry the
    line each annotation last resolved to, None while it is unresolved.
    """
    declarations: dict[str, Declaration] = {}
    references: list[Reference] = []

    for file_path, annotations in annotations_by_file.items():
        for annotation in annotations:
            body = annotation.body or ""
            for match in _DECLARATION_RE.finditer(body):
                name = match.group(1)
                if name in declarations:
                    logger.debug(
                        "Tag $%s redeclared by annotation %s", name, annotation.id
                    )
                declarations[name] = Declaration(
                    tag_name=name,
                    file_path=file_path,
                    line=annotation.resolved_line,
                    annotation_id=annotation.id,
                    body=body,
                )
            for match in _REFERENCE_RE.finditer(body):
                references.append(
                    Reference(
                        tag_name=match.group(1),
                        file_path=file_path,
                        line=annotation.resolved_line,
                        annotation_id=annotation.id,
                        span=(match.start(), match.end()),
                    )
                )

    return TagIndex(
        declarations=MappingProxyType(declarations),
        references=tuple(references),
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def declaration_of(index: TagIndex, name: str) -> Declaration | None:
    return index.declarations.get(name)


def references_of(index: TagIndex, name: str) -> list[Reference]:
    return [ref for ref in index.references if ref.tag_name == name]


def all_declared_names(index: TagIndex) -> list[str]:
    return sorted(index.declarations)


def reference_at(
    index: TagIndex, file_path: str, line: int, offset: int
) -> Reference | None:
    """The reference under a body offset. A caret just after the name still counts."""
    for ref in index.references:
        start, end = ref.span
        if ref.file_path == file_path and ref.line == line and start <= offset <= end:
            return ref
    return None


def complete_tag(index: TagIndex, text_before_cursor: str) -> list[str]:
    """Declared names completing a trailing ``@partial`` in the given text."""
    match = _PARTIAL_REFERENCE_RE.search(text_before_cursor)
    if match is None:
        return []
    partial = match.group(1) or ""
    return [name for name in all_declared_names(index) if name.startswith(partial)]
