"""Environment-driven configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from mcp_line_annotations.store import LEGACY_STORE_NAME, default_store_path

logger = logging.getLogger(__name__)


def _env_seconds(name: str, default_ms: int) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default_ms / 1000.0
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return default_ms / 1000.0
    if value < 0:
        logger.warning("Ignoring %s=%r: negative", name, raw)
        return default_ms / 1000.0
    return value / 1000.0


@dataclass
class EngineConfig:
    project_root: str
    store_path: str
    storage_dir: str
    debounce_seconds: float = 0.3
    input_window_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Read PROJECT_ROOT, ANNOTATION_STORE, ANNOTATION_STORAGE_DIR,
        ANNOTATION_DEBOUNCE_MS and ANNOTATION_INPUT_WINDOW_MS."""
        project_root = os.path.abspath(os.environ.get("PROJECT_ROOT", os.getcwd()))
        storage_dir = os.environ.get("ANNOTATION_STORAGE_DIR") or os.path.join(
            os.path.expanduser("~"), ".mcp-line-annotations"
        )
        store_path = os.environ.get("ANNOTATION_STORE") or default_store_path(
            project_root, storage_dir
        )
        return cls(
            project_root=project_root,
            store_path=store_path,
            storage_dir=storage_dir,
            debounce_seconds=_env_seconds("ANNOTATION_DEBOUNCE_MS", 300),
            input_window_seconds=_env_seconds("ANNOTATION_INPUT_WINDOW_MS", 1000),
        )

    @property
    def legacy_store_path(self) -> str:
        return os.path.join(self.storage_dir, LEGACY_STORE_NAME)
