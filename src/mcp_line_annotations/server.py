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

"""MCP server for line-anchored annotations.

Exposes the annotation engine as MCP tools so an editor host (or an agent)
can attach notes to lines, report edits, and navigate `$tag` / `@tag`
cross-references without the notes ever being written into the files.

Usage:
    PROJECT_ROOT=/path/to/project python -m mcp_line_annotations.server
"""

from __future__ import annotations

import asyncio
import json
import sys
import time
import traceback
from collections import deque

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent
import mcp.types as types

from mcp_line_annotations.activity import InputActivityTracker
from mcp_line_annotations.checkout_guard import CheckoutGuard
from mcp_line_annotations.config import EngineConfig
from mcp_line_annotations.engine import AnnotationEngine
from mcp_line_annotations.models import (
    AnnotationRepositioned,
    AnnotationUnresolved,
    EngineEvent,
    PersistRequested,
)
from mcp_line_annotations.query_api import create_annotation_query_functions
from mcp_line_annotations.store import AnnotationStore
from mcp_line_annotations.text_source import BufferTextSource, DiskTextSource

# ---------------------------------------------------------------------------
# Module-level state
# ---------------------------------------------------------------------------

server = Server("mcp-line-annotations")

_config: EngineConfig | None = None
_store: AnnotationStore | None = None
_buffers: BufferTextSource | None = None
_engine: AnnotationEngine | None = None
_query_fns: dict | None = None
_activity: InputActivityTracker | None = None
_checkout_guard: CheckoutGuard | None = None
_reconcile_handle: asyncio.TimerHandle | None = None

# Repositioned/unresolved notices waiting to be fetched by the host
_notifications: deque[dict] = deque(maxlen=200)


def _log(message: str) -> None:
    print(f"[mcp-line-annotations] {message}", file=sys.stderr)


def _format_result(value: object) -> str:
    """Format a query result as readable text."""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2, default=str)
    return str(value)


def _on_engine_event(event: EngineEvent) -> None:
    if isinstance(event, PersistRequested):
        if _store is not None and _engine is not None:
            _store.save(_engine.all_annotations())
    elif isinstance(event, AnnotationRepositioned):
        _notifications.append({
            "event": "repositioned",
            "id": event.annotation_id,
            "file": event.file_path,
            "old_line": event.old_line,
            "new_line": event.new_line,
        })
    elif isinstance(event, AnnotationUnresolved):
        _notifications.append({
            "event": "unresolved",
            "id": event.annotation_id,
            "file": event.file_path,
        })


def _build_engine() -> None:
    """Load (or reload) the annotation store and wire up the engine."""
    global _config, _store, _buffers, _engine, _query_fns, _activity, _checkout_guard

    _config = EngineConfig.from_env()
    _log(f"Project: {_config.project_root}")
    _log(f"Store: {_config.store_path}")

    _store = AnnotationStore(_config.store_path)
    migrated = _store.migrate_legacy(_config.legacy_store_path, _config.project_root)
    if migrated:
        _log(f"Migrated annotations of {migrated} files from the legacy store")

    # Keep open buffers across a reload; only the annotations are re-read
    if _buffers is None:
        _buffers = BufferTextSource(DiskTextSource(_config.project_root))
    _engine = AnnotationEngine(
        _buffers,
        _store.load(),
        debounce_seconds=_config.debounce_seconds,
    )
    _engine.subscribe(_on_engine_event)
    _query_fns = create_annotation_query_functions(_engine)
    _activity = InputActivityTracker(_config.input_window_seconds)
    _checkout_guard = CheckoutGuard(_config.project_root)

    stats = _engine.stats()
    _log(
        f"Loaded {stats['annotations']} annotations in {stats['files']} files, "
        f"{stats['tag_declarations']} tags"
    )


# ---------------------------------------------------------------------------
# Debounced reconciliation
# ---------------------------------------------------------------------------


def _run_due_reconciliation() -> None:
    global _reconcile_handle
    _reconcile_handle = None
    if _engine is None:
        return
    try:
        files = _engine.tick()
    except Exception:
        _log(f"Reconciliation failed: {traceback.format_exc()}")
        return
    if files:
        _log(f"Reconciled {len(files)} file(s)")
    _schedule_reconciliation()


def _schedule_reconciliation() -> None:
    """Keep exactly one deferred callback aligned with the engine's deadline."""
    global _reconcile_handle
    if _reconcile_handle is not None:
        _reconcile_handle.cancel()
        _reconcile_handle = None
    if _engine is None or _engine.next_deadline is None:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        # No loop (e.g. direct calls in tests): the next tool call ticks instead
        return
    delay = max(0.0, _engine.next_deadline - time.monotonic())
    _reconcile_handle = loop.call_later(delay, _run_due_reconciliation)


def _document_changed(arguments: dict) -> dict:
    file_path = arguments["file_path"]
    # Annotations are located against the text as it was before this edit
    previous_lines = _buffers.get_lines(file_path)
    if "text" in arguments:
        _buffers.set_text(file_path, arguments["text"])

    recent = arguments.get("user_initiated")
    if recent is None:
        recent = _activity.is_recent()
    if recent and _checkout_guard is not None and _checkout_guard.checkout_happened():
        _log(f"Ignoring change to {file_path}: git checkout in progress")
        recent = False

    result = _query_fns["document_changed"](
        file_path, arguments.get("changes", []), bool(recent), previous_lines=previous_lines
    )
    _schedule_reconciliation()
    return result


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

_FILE_PATH = {
    "type": "string",
    "description": "Path of the annotated file (as used when the annotation was added).",
}
_LINE = {"type": "integer", "description": "0-indexed line number."}
_ANNOTATION_ID = {"type": "string", "description": "Annotation id."}

TOOLS = [
    Tool(
        name="open_document",
        description="Register the live text of an open document and return its resolved annotations.",
        inputSchema={
            "type": "object",
            "properties": {
                "file_path": _FILE_PATH,
                "text": {"type": "string", "description": "Full current text of the document."},
            },
            "required": ["file_path", "text"],
        },
    ),
    Tool(
        name="close_document",
        description="Forget a document's live text; the file on disk is used from now on.",
        inputSchema={
            "type": "object",
            "properties": {"file_path": _FILE_PATH},
            "required": ["file_path"],
        },
    ),
    Tool(
        name="document_changed",
        description=(
            "Report edits to a document. Line-count-preserving edits on an annotated line "
            "refresh its snapshot at once; structural edits schedule a debounced "
            "re-anchoring. Changes without recent user input are ignored."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "file_path": _FILE_PATH,
                "changes": {
                    "type": "array",
                    "description": "Edited ranges in pre-change coordinates.",
                    "items": {
                        "type": "object",
                        "properties": {
                            "start_line": {"type": "integer"},
                            "end_line": {"type": "integer"},
                            "text": {"type": "string", "description": "Inserted text."},
                        },
                        "required": ["start_line", "end_line"],
                    },
                },
                "text": {"type": "string", "description": "Full document text after the edit."},
                "user_initiated": {
                    "type": "boolean",
                    "description": "Whether the edit came from the user. Defaults to recent record_input activity.",
                },
            },
            "required": ["file_path", "changes"],
        },
    ),
    Tool(
        name="record_input",
        description="Signal genuine user interaction (keystroke, paste, command) just happened.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="list_annotations",
        description="Resolve and list a file's annotations: id, line (null if unresolved), matched, body.",
        inputSchema={
            "type": "object",
            "properties": {"file_path": _FILE_PATH},
            "required": ["file_path"],
        },
    ),
    Tool(
        name="get_annotation",
        description="Get one annotation by id.",
        inputSchema={
            "type": "object",
            "properties": {"annotation_id": _ANNOTATION_ID},
            "required": ["annotation_id"],
        },
    ),
    Tool(
        name="add_annotation",
        description="Attach a note to a line. Replaces the note currently shown on that line.",
        inputSchema={
            "type": "object",
            "properties": {
                "file_path": _FILE_PATH,
                "line": _LINE,
                "body": {"type": "string", "description": "Note text; may contain $tag and @tag."},
            },
            "required": ["file_path", "line", "body"],
        },
    ),
    Tool(
        name="edit_annotation",
        description="Replace the text of an annotation.",
        inputSchema={
            "type": "object",
            "properties": {
                "annotation_id": _ANNOTATION_ID,
                "body": {"type": "string", "description": "New note text."},
            },
            "required": ["annotation_id", "body"],
        },
    ),
    Tool(
        name="reanchor_annotation",
        description="Bind an annotation to a different line, taking that line's text as its snapshot.",
        inputSchema={
            "type": "object",
            "properties": {"annotation_id": _ANNOTATION_ID, "line": _LINE},
            "required": ["annotation_id", "line"],
        },
    ),
    Tool(
        name="remove_annotation",
        description="Delete an annotation by id, or the one shown on file_path:line.",
        inputSchema={
            "type": "object",
            "properties": {
                "annotation_id": _ANNOTATION_ID,
                "file_path": _FILE_PATH,
                "line": _LINE,
            },
        },
    ),
    Tool(
        name="find_tag_declaration",
        description="Where is $name declared? Returns file, line, annotation id and body.",
        inputSchema={
            "type": "object",
            "properties": {"name": {"type": "string", "description": "Tag name without $."}},
            "required": ["name"],
        },
    ),
    Tool(
        name="find_tag_references",
        description="All @name references across files.",
        inputSchema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Tag name without @."},
                "max_results": {
                    "type": "integer",
                    "description": "Maximum number of results to return (0 = unlimited, default 0).",
                },
            },
            "required": ["name"],
        },
    ),
    Tool(
        name="list_tags",
        description="Sorted list of declared tag names.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="tag_at",
        description="The @tag reference at an offset inside the annotation body on file_path:line, with its declaration.",
        inputSchema={
            "type": "object",
            "properties": {
                "file_path": _FILE_PATH,
                "line": _LINE,
                "offset": {"type": "integer", "description": "Character offset in the annotation body."},
            },
            "required": ["file_path", "line", "offset"],
        },
    ),
    Tool(
        name="complete_tag",
        description="Declared tag names completing a trailing @partial in the given text.",
        inputSchema={
            "type": "object",
            "properties": {
                "text_before_cursor": {"type": "string", "description": "Annotation text up to the caret."},
            },
            "required": ["text_before_cursor"],
        },
    ),
    Tool(
        name="get_notifications",
        description="Drain pending notices about annotations that moved or became unresolved.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="get_annotation_stats",
        description="Counts of annotated files, annotations, tag declarations and references.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="reload",
        description="Re-read the annotation store from disk, discarding unsaved in-memory state.",
        inputSchema={"type": "object", "properties": {}},
    ),
]


# ---------------------------------------------------------------------------
# MCP handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def list_tools() -> list[Tool]:
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
    try:
        if name == "reload":
            _build_engine()
            return [TextContent(type="text", text="Annotations reloaded.")]

        if _query_fns is None or _engine is None:
            return [TextContent(type="text", text="Error: engine not initialised. Call reload first.")]

        # Catch up on any reconciliation whose deadline passed between calls
        if _engine.tick():
            _schedule_reconciliation()

        if name == "open_document":
            _buffers.set_text(arguments["file_path"], arguments["text"])
            result = _query_fns["list_annotations"](arguments["file_path"])

        elif name == "close_document":
            _engine.flush()
            _buffers.close(arguments["file_path"])
            result = f"Closed {arguments['file_path']}"

        elif name == "document_changed":
            result = _document_changed(arguments)

        elif name == "record_input":
            _activity.record_input()
            result = "ok"

        elif name == "list_annotations":
            result = _query_fns["list_annotations"](arguments["file_path"])

        elif name == "get_annotation":
            result = _query_fns["get_annotation"](arguments["annotation_id"])

        elif name == "add_annotation":
            result = _query_fns["add_annotation"](
                arguments["file_path"], arguments["line"], arguments["body"]
            )

        elif name == "edit_annotation":
            result = _query_fns["edit_annotation"](arguments["annotation_id"], arguments["body"])

        elif name == "reanchor_annotation":
            result = _query_fns["reanchor_annotation"](
                arguments["annotation_id"], arguments["line"]
            )

        elif name == "remove_annotation":
            result = _query_fns["remove_annotation"](
                arguments.get("annotation_id"),
                arguments.get("file_path"),
                arguments.get("line"),
            )

        elif name == "find_tag_declaration":
            result = _query_fns["find_tag_declaration"](arguments["name"])

        elif name == "find_tag_references":
            max_results = arguments.get("max_results", 0)
            result = _query_fns["find_tag_references"](arguments["name"], max_results=max_results)

        elif name == "list_tags":
            result = _query_fns["list_tags"]()

        elif name == "tag_at":
            result = _query_fns["tag_at"](
                arguments["file_path"], arguments["line"], arguments["offset"]
            )

        elif name == "complete_tag":
            result = _query_fns["complete_tag"](arguments["text_before_cursor"])

        elif name == "get_notifications":
            result = list(_notifications)
            _notifications.clear()

        elif name == "get_annotation_stats":
            result = _query_fns["get_annotation_stats"]()

        else:
            return [TextContent(type="text", text=f"Error: unknown tool '{name}'")]

        return [TextContent(type="text", text=_format_result(result))]

    except Exception as e:
        tb = traceback.format_exc()
        _log(f"Error in {name}: {tb}")
        return [TextContent(type="text", text=f"Error: {e}")]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def main():
    _build_engine()
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        # Apply edits still inside their quiet window before exiting
        if _engine is not None and _engine.flush():
            _log("Flushed pending reconciliation on shutdown")


def main_sync():
    """Synchronous entry point for console_scripts."""
    asyncio.run(main())


if __name__ == "__main__":
    main_sync()
