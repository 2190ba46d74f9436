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

"""Query and command functions bound to an AnnotationEngine.

Provides a factory that creates a dictionary of functions over an engine.
All functions take and return plain values (dicts, lists, strings) and
report misuse as ``{"error": ...}`` instead of raising. Lines are 0-indexed
throughout, matching the persisted records.
"""

from __future__ import annotations

from typing import Callable

from mcp_line_annotations.engine import AnnotationEngine
from mcp_line_annotations.models import (
    Annotation,
    Declaration,
    DocumentChange,
    DocumentChangeEvent,
    Matched,
    Reference,
)
from mcp_line_annotations.tag_graph import (
    all_declared_names,
    complete_tag,
    declaration_of,
    reference_at,
    references_of,
)


def _annotation_dict(annotation: Annotation) -> dict:
    return {
        "id": annotation.id,
        "file": annotation.file_path,
        "line": annotation.resolved_line,
        "matched": annotation.matched,
        "body": annotation.body,
        "content_snapshot": annotation.content_snapshot,
    }


def _declaration_dict(decl: Declaration) -> dict:
    return {
        "tag": decl.tag_name,
        "file": decl.file_path,
        "line": decl.line,
        "annotation_id": decl.annotation_id,
        "body": decl.body,
    }


def _reference_dict(ref: Reference) -> dict:
    return {
        "tag": ref.tag_name,
        "file": ref.file_path,
        "line": ref.line,
        "annotation_id": ref.annotation_id,
        "span": list(ref.span),
    }


def parse_changes(raw_changes: list[dict]) -> list[DocumentChange]:
    """Convert ``[{start_line, end_line, text}]`` into DocumentChange objects."""
    changes = []
    for raw in raw_changes:
        start = int(raw["start_line"])
        end = int(raw.get("end_line", start))
        if start < 0 or end < start:
            raise ValueError(f"invalid change range {start}-{end}")
        changes.append(DocumentChange(start, end, str(raw.get("text", ""))))
    return changes


def create_annotation_query_functions(engine: AnnotationEngine) -> dict[str, Callable]:
    """Create query/command functions bound to an annotation engine."""

    def list_annotations(file_path: str) -> list[dict]:
        """Resolve a file's annotations: [{id, line, matched, body, reason}]."""
        results = engine.resolve_all(file_path)
        output = []
        for annotation in engine.annotations_for(file_path):
            result = results[annotation.id]
            output.append({
                "id": annotation.id,
                "line": result.line if isinstance(result, Matched) else None,
                "matched": result.matched,
                "body": annotation.body,
                "reason": None if isinstance(result, Matched) else result.reason,
            })
        output.sort(key=lambda r: (r["line"] is None, r["line"] or 0))
        return output

    def get_annotation(annotation_id: str) -> dict:
        try:
            return _annotation_dict(engine.get_annotation(annotation_id))
        except KeyError:
            return {"error": f"annotation '{annotation_id}' not found"}

    def add_annotation(file_path: str, line: int, body: str) -> dict:
        try:
            return _annotation_dict(engine.add_annotation(file_path, line, body))
        except ValueError as e:
            return {"error": str(e)}

    def edit_annotation(annotation_id: str, body: str) -> dict:
        try:
            return _annotation_dict(engine.edit_annotation(annotation_id, body))
        except KeyError:
            return {"error": f"annotation '{annotation_id}' not found"}

    def reanchor_annotation(annotation_id: str, line: int) -> dict:
        try:
            return _annotation_dict(engine.reanchor_annotation(annotation_id, line))
        except KeyError:
            return {"error": f"annotation '{annotation_id}' not found"}
        except ValueError as e:
            return {"error": str(e)}

    def remove_annotation(annotation_id: str | None = None,
                          file_path: str | None = None,
                          line: int | None = None) -> str:
        """Remove by id, or by the line an annotation is currently shown on."""
        if annotation_id is not None:
            if engine.remove_annotation(annotation_id):
                return f"Removed annotation {annotation_id}"
            return f"Error: annotation '{annotation_id}' not found"
        if file_path is None or line is None:
            return "Error: pass annotation_id, or file_path and line"
        if engine.remove_annotation_at(file_path, line):
            return f"Removed annotation on line {line} of {file_path}"
        return f"Error: no annotation on line {line} of {file_path}"

    def document_changed(file_path: str, changes: list[dict], recent_input: bool,
                         previous_lines: list[str] | None = None) -> dict:
        """Report an edit; returns fast-path refreshes and the pending state.

        ``previous_lines`` is the document text just before the edit.
        """
        try:
            event = DocumentChangeEvent(changes=parse_changes(changes))
        except (KeyError, TypeError, ValueError) as e:
            return {"error": f"invalid changes: {e}"}
        refreshed = engine.notify_change(
            file_path, event, recent_input, previous_lines=previous_lines
        )
        return {
            "applied": recent_input,
            "refreshed": refreshed,
            "reconcile_pending": file_path in engine.pending_files,
        }

    def find_tag_declaration(name: str) -> dict:
        decl = declaration_of(engine.tag_index, name)
        if decl is None:
            return {"error": f"tag '${name}' is not declared"}
        return _declaration_dict(decl)

    def find_tag_references(name: str, max_results: int = 0) -> list[dict]:
        result = [_reference_dict(r) for r in references_of(engine.tag_index, name)]
        if max_results > 0:
            result = result[:max_results]
        return result

    def list_tags() -> list[str]:
        return all_declared_names(engine.tag_index)

    def tag_at(file_path: str, line: int, offset: int) -> dict:
        """Reference under a body offset, with its declaration if one exists."""
        ref = reference_at(engine.tag_index, file_path, line, offset)
        if ref is None:
            return {"error": f"no tag reference at {file_path}:{line}:{offset}"}
        result = _reference_dict(ref)
        decl = declaration_of(engine.tag_index, ref.tag_name)
        result["declaration"] = _declaration_dict(decl) if decl else None
        return result

    def complete_tag_name(text_before_cursor: str) -> list[str]:
        return complete_tag(engine.tag_index, text_before_cursor)

    def get_annotation_stats() -> dict:
        return engine.stats()

    return {
        "list_annotations": list_annotations,
        "get_annotation": get_annotation,
        "add_annotation": add_annotation,
        "edit_annotation": edit_annotation,
        "reanchor_annotation": reanchor_annotation,
        "remove_annotation": remove_annotation,
        "document_changed": document_changed,
        "find_tag_declaration": find_tag_declaration,
        "find_tag_references": find_tag_references,
        "list_tags": list_tags,
        "tag_at": tag_at,
        "complete_tag": complete_tag_name,
        "get_annotation_stats": get_annotation_stats,
    }
