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

"""Git checkout detection.

A branch switch, reset or rebase rewrites files behind the editor's back.
Such rewrites can coincide with genuine typing, so the input signal alone is
not always enough: if HEAD or the checked-out branch moved since the last
document change, that change is treated as external.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitCheckoutState:
    """HEAD commit and current branch (None when detached)."""

    head: str | None
    branch: str | None


def _git(root_path: str, *args: str) -> str | None:
    """Run a git command, returning stripped stdout or None on any failure."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=root_path,
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def is_git_repo(root_path: str) -> bool:
    """Check if the given path is inside a git work tree."""
    return _git(root_path, "rev-parse", "--is-inside-work-tree") == "true"


def read_checkout_state(root_path: str) -> GitCheckoutState:
    """Current HEAD and branch. Both None outside a repository."""
    head = _git(root_path, "rev-parse", "HEAD")
    branch = _git(root_path, "symbolic-ref", "--short", "-q", "HEAD")
    return GitCheckoutState(head=head or None, branch=branch or None)


class CheckoutGuard:
    """Vetoes the input signal for changes that coincide with a checkout."""

    def __init__(self, root_path: str, enabled: bool | None = None):
        self.root_path = root_path
        self.enabled = is_git_repo(root_path) if enabled is None else enabled
        self._last_state: GitCheckoutState | None = (
            read_checkout_state(root_path) if self.enabled else None
        )

    def checkout_happened(self) -> bool:
        """True if HEAD or the branch changed since the previous call."""
        if not self.enabled:
            return False
        state = read_checkout_state(self.root_path)
        if state.head is None:
            logger.debug("Could not read HEAD in %s, keeping last checkout state", self.root_path)
            return False
        previous, self._last_state = self._last_state, state
        if previous is None or state == previous:
            return False
        logger.info(
            "Checkout detected (%s@%s -> %s@%s)",
            previous.branch,
            (previous.head or "?")[:8],
            state.branch,
            (state.head or "?")[:8],
        )
        return True
