"""Custom exception types used across gitspaces."""

from __future__ import annotations

from typing import Sequence


class GitspacesError(Exception):
    pass


class UsageError(GitspacesError, ValueError):
    """Raised when inputs are rejected before any git process is started.

    This is intended to surface a clear, single-line message to the caller.
    """

    pass


class GitCommandError(GitspacesError):
    """A git invocation exited non-zero or was killed.

    ``diagnostics`` holds the redacted stderr (or stdout when stderr is empty)
    so callers can tell an auth failure from a network failure without
    re-running anything.
    """

    def __init__(
        self,
        action: str,
        *,
        args: Sequence[str] = (),
        exit_code: int | None = None,
        timed_out: bool = False,
        diagnostics: str = "",
    ) -> None:
        super().__init__(
            f"{action} failed (exit_code={exit_code}, timed_out={timed_out}): {diagnostics}"
        )
        self.action = action
        self.args_list = list(args)
        self.exit_code = exit_code
        self.timed_out = timed_out
        self.diagnostics = diagnostics


class GitTimeoutError(GitCommandError):
    """Raised when a git process was killed after exceeding its timeout."""

    pass


class MergeInProgressError(GitspacesError):
    """The workspace is mid-merge; commit a resolution or abort first."""

    def __init__(self, workspace_path: str, unmerged_files: Sequence[str] = ()) -> None:
        files = list(unmerged_files)
        detail = f" (unmerged: {', '.join(files)})" if files else ""
        super().__init__(
            f"Workspace {workspace_path} has a merge in progress{detail}; "
            "commit the resolution or abort the merge first"
        )
        self.workspace_path = workspace_path
        self.unmerged_files = files


class WorkspaceNotFoundError(GitspacesError):
    def __init__(self, workspace_path: str) -> None:
        super().__init__(f"Workspace not found: {workspace_path}")
        self.workspace_path = workspace_path


__all__ = [
    "GitCommandError",
    "GitTimeoutError",
    "GitspacesError",
    "MergeInProgressError",
    "UsageError",
    "WorkspaceNotFoundError",
]
