import asyncio

import pytest

from gitspaces.errors import structured_error
from gitspaces.exceptions import (
    GitCommandError,
    GitTimeoutError,
    MergeInProgressError,
    UsageError,
    WorkspaceNotFoundError,
)


def test_git_failures_carry_diagnostics():
    exc = GitCommandError(
        "git push",
        args=["push", "-u", "origin", "HEAD"],
        exit_code=128,
        diagnostics="fatal: Authentication failed for 'https://github.com/acme/widgets.git/'",
    )
    payload = structured_error(exc, context="publish_changes")

    assert payload["status"] == "error"
    err = payload["error"]
    assert err["error"] == "GitCommandError"
    assert err["category"] == "auth"
    assert err["context"] == "publish_changes"
    assert err["exit_code"] == 128
    assert err["timed_out"] is False
    assert "Authentication failed" in err["diagnostics"]
    assert err["next_steps"][0]["kind"] == "credential"


@pytest.mark.parametrize(
    "exc, category",
    [
        (UsageError("branch must be a non-empty string"), "validation"),
        (WorkspaceNotFoundError("/data/worktrees/task-1"), "not_found"),
        (MergeInProgressError("/ws", ["a.txt"]), "merge_in_progress"),
        (GitTimeoutError("git fetch", timed_out=True), "timeout"),
        (asyncio.TimeoutError(), "timeout"),
        (GitCommandError("git merge", exit_code=1, diagnostics="fatal: refusing"), "git"),
        (RuntimeError("boom"), "unknown"),
    ],
)
def test_error_categories(exc, category):
    assert structured_error(exc, context="tool")["error"]["category"] == category


def test_merge_in_progress_payload_lists_unmerged_files():
    err = structured_error(MergeInProgressError("/ws", ["a.txt", "b.txt"]), context="sync")["error"]
    assert err["workspace_path"] == "/ws"
    assert err["unmerged_files"] == ["a.txt", "b.txt"]
    assert err["next_steps"][0]["tool"] == "commit_resolution"
