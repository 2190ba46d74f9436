"""Sources of current document text.

The engine never reads files itself; it asks a text source for the current
lines of a path and gets ``None`` when the text is unavailable.
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

logger = logging.getLogger(__name__)


class TextSnapshotSource(Protocol):
    def get_lines(self, file_path: str) -> list[str] | None: ...


def split_lines(text: str) -> list[str]:
    """Split text into lines the way an editor numbers them."""
    return text.replace("\r\n", "\n").replace("\r", "\n").split("\n")


class DiskTextSource:
    """Reads files from disk, relative paths resolved against ``root_path``."""

    def __init__(self, root_path: str | None = None, max_file_size_bytes: int = 5_000_000):
        self.root_path = os.path.abspath(root_path) if root_path else None
        self.max_file_size_bytes = max_file_size_bytes

    def _abs_path(self, file_path: str) -> str:
        if os.path.isabs(file_path) or self.root_path is None:
            return file_path
        return os.path.join(self.root_path, file_path)

    def get_lines(self, file_path: str) -> list[str] | None:
        abs_path = self._abs_path(file_path)
        try:
            if os.path.getsize(abs_path) > self.max_file_size_bytes:
                logger.debug("Skipping %s: larger than %d bytes", abs_path, self.max_file_size_bytes)
                return None
            text = self._read_file(abs_path)
        except OSError as e:
            logger.debug("Text of %s unavailable: %s", abs_path, e)
            return None
        return split_lines(text)

    @staticmethod
    def _read_file(abs_path: str) -> str:
        """Read a file as text, trying UTF-8 first then latin-1 as fallback."""
        try:
            with open(abs_path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except UnicodeDecodeError:
            with open(abs_path, "r", encoding="latin-1", newline="") as f:
                return f.read()


class BufferTextSource:
    """Open editor buffers pushed by the host, falling back to another source."""

    def __init__(self, fallback: TextSnapshotSource | None = None):
        self._buffers: dict[str, list[str]] = {}
        self._fallback = fallback

    def set_text(self, file_path: str, text: str) -> list[str]:
        lines = split_lines(text)
        self._buffers[file_path] = lines
        return lines

    def close(self, file_path: str) -> None:
        self._buffers.pop(file_path, None)

    def get_lines(self, file_path: str) -> list[str] | None:
        lines = self._buffers.get(file_path)
        if lines is not None:
            return list(lines)
        if self._fallback is not None:
            return self._fallback.get_lines(file_path)
        return None
