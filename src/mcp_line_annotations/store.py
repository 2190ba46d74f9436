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

"""JSON persistence of annotations, one object keyed by file path.

Each file path maps to a list of records with exactly the fields
``id, filePath, storedLine, contentSnapshot, body, createdAt, updatedAt,
matched``. External tooling reads this file directly, so the shape is a
compatibility boundary.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from typing import Mapping, Sequence

from mcp_line_annotations.models import Annotation, new_annotation_id

logger = logging.getLogger(__name__)

LEGACY_STORE_NAME = "local-comments.json"


def annotation_to_record(annotation: Annotation) -> dict:
    return {
        "id": annotation.id,
        "filePath": annotation.file_path,
        "storedLine": annotation.stored_line,
        "contentSnapshot": annotation.content_snapshot,
        "body": annotation.body,
        "createdAt": annotation.created_at,
        "updatedAt": annotation.updated_at,
        "matched": annotation.matched,
    }


def _timestamp(value: object, default: float) -> float:
    """Seconds since the epoch. Legacy records carry milliseconds."""
    if not isinstance(value, (int, float)):
        return default
    return value / 1000.0 if value > 1e11 else float(value)


def annotation_from_record(file_path: str, record: Mapping) -> Annotation:
    """Build an Annotation from a stored record, legacy keys included.

    ``matched`` is never trusted from disk. A record without a content
    snapshot loads with an empty one and therefore never resolves.
    """
    line = record.get("storedLine", record.get("line", 0))
    snapshot = record.get("contentSnapshot", record.get("lineContent"))
    created = _timestamp(record.get("createdAt", record.get("timestamp")), 0.0)
    return Annotation(
        id=str(record.get("id") or new_annotation_id()),
        file_path=record.get("filePath") or file_path,
        stored_line=line if isinstance(line, int) else 0,
        content_snapshot=(snapshot or "").strip() if isinstance(snapshot, str) else "",
        body=str(record.get("body", record.get("content", ""))),
        created_at=created,
        updated_at=_timestamp(record.get("updatedAt"), created),
        matched=False,
    )


def default_store_path(workspace_root: str, storage_dir: str) -> str:
    """Per-workspace store file: ``<storage_dir>/projects/<name>-<md5>.json``."""
    workspace_root = os.path.abspath(workspace_root)
    digest = hashlib.md5(workspace_root.encode("utf-8")).hexdigest()
    name = os.path.basename(workspace_root.rstrip(os.sep)) or "root"
    return os.path.join(storage_dir, "projects", f"{name}-{digest}.json")


class AnnotationStore:
    """Load/save the annotation mapping from a single JSON file."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> dict[str, list[Annotation]]:
        """Read all annotations. A missing or unreadable file yields {}."""
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error("Cannot load annotations from %s: %s", self.path, e)
            return {}
        if not isinstance(raw, dict):
            logger.error("Cannot load annotations from %s: not a JSON object", self.path)
            return {}

        result: dict[str, list[Annotation]] = {}
        for file_path, records in raw.items():
            if not isinstance(records, list):
                logger.warning("Skipping malformed entry for %s", file_path)
                continue
            result[file_path] = [
                annotation_from_record(file_path, r) for r in records if isinstance(r, dict)
            ]
        return result

    def save(self, annotations_by_file: Mapping[str, Sequence[Annotation]]) -> bool:
        """Write all annotations. Files without annotations are omitted."""
        data = {
            file_path: [annotation_to_record(a) for a in annotations]
            for file_path, annotations in annotations_by_file.items()
            if annotations
        }
        tmp_path = self.path + ".tmp"
        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("Cannot save annotations to %s: %s", self.path, e)
            return False
        return True

    def migrate_legacy(self, legacy_path: str, workspace_root: str) -> int:
        """Copy entries under ``workspace_root`` from an old global store.

        Only runs when this store does not exist yet. Returns the number of
        files migrated.
        """
        if os.path.exists(self.path) or not os.path.exists(legacy_path):
            return 0
        legacy = AnnotationStore(legacy_path).load()
        prefix = os.path.abspath(workspace_root)
        migrated = {
            path: annotations
            for path, annotations in legacy.items()
            if os.path.abspath(path) == prefix
            or os.path.abspath(path).startswith(prefix.rstrip(os.sep) + os.sep)
        }
        if migrated and self.save(migrated):
            logger.info("Migrated annotations of %d files from %s", len(migrated), legacy_path)
            return len(migrated)
        return 0
