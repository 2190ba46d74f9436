"""Unit tests for checkout_guard module."""

from unittest.mock import patch, MagicMock
import subprocess

import pytest

from mcp_line_annotations.checkout_guard import (
    CheckoutGuard,
    GitCheckoutState,
    is_git_repo,
    read_checkout_state,
)

RUN = "mcp_line_annotations.checkout_guard.subprocess.run"


def _fake_git(state: dict):
    """subprocess.run replacement answering from a mutable HEAD/branch dict."""

    def run(cmd, **kwargs):
        if cmd[1:] == ["rev-parse", "--is-inside-work-tree"]:
            return MagicMock(returncode=0, stdout="true\n")
        if cmd[1:] == ["rev-parse", "HEAD"]:
            return MagicMock(returncode=0, stdout=state["head"] + "\n")
        if cmd[1:3] == ["symbolic-ref", "--short"]:
            if state["branch"] is None:
                return MagicMock(returncode=1, stdout="")
            return MagicMock(returncode=0, stdout=state["branch"] + "\n")
        return MagicMock(returncode=1, stdout="")

    return run


def _failing_git(kind: str):
    """patch() arguments for a project git cannot inspect."""
    if kind == "not_a_repo":
        return {"return_value": MagicMock(returncode=128, stdout="")}
    if kind == "no_git":
        return {"side_effect": FileNotFoundError}
    return {"side_effect": subprocess.TimeoutExpired(cmd="git", timeout=10)}


class TestGuardWithoutGit:
    @pytest.mark.parametrize("kind", ["not_a_repo", "no_git", "timeout"])
    def test_guard_stays_disabled(self, kind):
        with patch(RUN, **_failing_git(kind)):
            guard = CheckoutGuard("/project")
            assert guard.enabled is False
            assert guard.checkout_happened() is False
            assert is_git_repo("/project") is False

    def test_enabled_inside_work_tree(self):
        with patch(RUN, side_effect=_fake_git({"head": "abc123", "branch": "main"})):
            assert CheckoutGuard("/repo").enabled is True


class TestReadCheckoutState:
    def test_branch_and_head(self):
        with patch(RUN, side_effect=_fake_git({"head": "abc123", "branch": "main"})):
            assert read_checkout_state("/repo") == GitCheckoutState(head="abc123", branch="main")

    def test_detached_head(self):
        with patch(RUN, side_effect=_fake_git({"head": "abc123", "branch": None})):
            assert read_checkout_state("/repo") == GitCheckoutState(head="abc123", branch=None)

    def test_outside_repository(self):
        with patch(RUN) as mock_run:
            mock_run.return_value = MagicMock(returncode=128, stdout="")
            assert read_checkout_state("/tmp") == GitCheckoutState(head=None, branch=None)


class TestCheckoutGuard:
    def test_no_change_between_edits(self):
        state = {"head": "abc123", "branch": "main"}
        with patch(RUN, side_effect=_fake_git(state)):
            guard = CheckoutGuard("/repo")
            assert guard.enabled is True
            assert guard.checkout_happened() is False
            assert guard.checkout_happened() is False

    def test_branch_switch_detected_once(self):
        state = {"head": "abc123", "branch": "main"}
        with patch(RUN, side_effect=_fake_git(state)):
            guard = CheckoutGuard("/repo")
            state.update(head="def456", branch="feature")
            assert guard.checkout_happened() is True
            assert guard.checkout_happened() is False

    def test_reset_on_same_branch_detected(self):
        state = {"head": "abc123", "branch": "main"}
        with patch(RUN, side_effect=_fake_git(state)):
            guard = CheckoutGuard("/repo")
            state["head"] = "000fff"
            assert guard.checkout_happened() is True

    def test_git_failure_mid_session_keeps_last_state(self):
        state = {"head": "abc123", "branch": "main"}
        with patch(RUN, side_effect=_fake_git(state)):
            guard = CheckoutGuard("/repo")
        with patch(RUN, side_effect=FileNotFoundError):
            assert guard.checkout_happened() is False
        with patch(RUN, side_effect=_fake_git(state)):
            assert guard.checkout_happened() is False
            state["head"] = "def456"
            assert guard.checkout_happened() is True

    def test_explicitly_disabled_never_runs_git(self):
        with patch(RUN) as mock_run:
            guard = CheckoutGuard("/repo", enabled=False)
            assert guard.checkout_happened() is False
            mock_run.assert_not_called()
