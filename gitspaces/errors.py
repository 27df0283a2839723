"""Utilities for producing consistent tool-failure payloads.

The payload shape should remain stable so clients can rely on it:
``{"status": "error", "error": {"error", "message", "context", "category",
"next_steps", ...}}``. Git failures additionally carry the redacted process
diagnostics so a caller can tell an auth failure from a network failure.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict

from .config import BASE_LOGGER
from .exceptions import (
    GitCommandError,
    GitTimeoutError,
    MergeInProgressError,
    UsageError,
    WorkspaceNotFoundError,
)

LOGGER = BASE_LOGGER.getChild("errors")

_AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "permission denied",
    "invalid username or password",
    "403",
)


def _summarize_exception(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _classify_category(exc: BaseException, message: str) -> str:
    """Best-effort category for client UX and retry logic."""
    if isinstance(exc, MergeInProgressError):
        return "merge_in_progress"
    if isinstance(exc, WorkspaceNotFoundError):
        return "not_found"
    if isinstance(exc, (UsageError, ValueError, TypeError)):
        return "validation"
    if isinstance(exc, (GitTimeoutError, asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    if isinstance(exc, GitCommandError):
        lowered = (exc.diagnostics or "").lower()
        if any(marker in lowered for marker in _AUTH_MARKERS):
            return "auth"
        return "git"

    lowered = (message or "").lower()
    if "timeout" in lowered or "timed out" in lowered:
        return "timeout"
    return "unknown"


def _next_steps(*, category: str) -> list[dict[str, Any]]:
    """Return structured guidance for the caller."""

    def mk(kind: str, **kwargs: Any) -> dict[str, Any]:
        base: dict[str, Any] = {"kind": kind}
        base.update(kwargs)
        return base

    if category == "merge_in_progress":
        return [
            mk(
                "resolve",
                tool="commit_resolution",
                action="Fix the unmerged files and commit the resolution, or call abort_sync.",
            )
        ]
    if category == "not_found":
        return [mk("provision", tool="ensure_workspace", action="Create the workspace first.")]
    if category == "validation":
        return [mk("args", action="Correct the identifiers or branch name and retry.")]
    if category == "timeout":
        return [mk("timeout", action="Retry later; the remote may be slow or unreachable.")]
    if category == "auth":
        return [mk("credential", action="Retry with a fresh access credential.")]
    if category == "git":
        return [mk("retry", action="Inspect diagnostics; retry if the failure looks transient.")]
    return [mk("controller", action="Review logs and retry.")]


def structured_error(exc: BaseException, *, context: str) -> Dict[str, Any]:
    """Build a serializable failure payload for tool callers."""
    message = _summarize_exception(exc)
    category = _classify_category(exc, message)

    if category == "unknown":
        LOGGER.error("Tool failure in %s", context, exc_info=exc)
    else:
        LOGGER.warning("Tool failure in %s (%s): %s", context, category, message)

    error: Dict[str, Any] = {
        "error": exc.__class__.__name__,
        "message": message,
        "context": context,
        "category": category,
        "next_steps": _next_steps(category=category),
    }

    if isinstance(exc, GitCommandError):
        error["action"] = exc.action
        error["exit_code"] = exc.exit_code
        error["timed_out"] = exc.timed_out
        error["diagnostics"] = exc.diagnostics
    if isinstance(exc, MergeInProgressError):
        error["workspace_path"] = exc.workspace_path
        error["unmerged_files"] = list(exc.unmerged_files)
    if isinstance(exc, WorkspaceNotFoundError):
        error["workspace_path"] = exc.workspace_path

    return {"status": "error", "error": error}


__all__ = ["structured_error"]
