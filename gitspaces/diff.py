"""Read-only views of what a workspace branch changes."""

from __future__ import annotations

from typing import Any, Optional

from . import config
from ._shared import _GitComponent
from .locks import LockTable
from .mirror import MirrorStore

LOGGER = config.BASE_LOGGER.getChild("diff")


def _parse_git_numstat(stdout: str) -> list[dict[str, Any]]:
    """Parse `git diff --numstat -z` output into a structured list."""
    out: list[dict[str, Any]] = []
    fields = (stdout or "").split("\0")
    i = 0
    while i < len(fields):
        record = fields[i]
        i += 1
        # Format: <added>\t<removed>\t<path>; a rename leaves <path> empty and
        # is followed by <old>\0<new>.
        parts = record.split("\t", 2)
        if len(parts) < 3:
            continue
        added_s, removed_s, path = parts
        if not path:
            if i + 1 >= len(fields):
                break
            path = fields[i + 1]
            i += 2
        out.append(
            {
                "path": path,
                "added": int(added_s) if added_s.isdigit() else None,
                "removed": int(removed_s) if removed_s.isdigit() else None,
                "is_binary": added_s == "-" or removed_s == "-",
            }
        )
    return out


class DiffReader(_GitComponent):
    """Diffs a workspace's committed HEAD against the default branch.

    The comparison is three-dot (``base...HEAD``), so only what the task
    branch introduced since it diverged shows up, never changes that landed
    on the default branch afterwards. Uncommitted edits are not included.
    """

    def __init__(self, mirrors: MirrorStore, *, locks: Optional[LockTable] = None) -> None:
        super().__init__(run_git=mirrors._run_git_fn, locks=locks or mirrors.locks)
        self.mirrors = mirrors

    async def _base_ref(self, workspace_path: str, mirror_path: str) -> str:
        default_branch = await self.mirrors.default_branch(mirror_path)
        base = await self.mirrors.default_base_ref(workspace_path, default_branch)
        if base != default_branch:
            return base
        LOGGER.info(
            "No origin/%s in %s, diffing against local %s",
            default_branch,
            workspace_path,
            default_branch,
        )
        return default_branch

    async def diff(self, workspace_path: str, mirror_path: str) -> str:
        """Unified diff text exactly as git prints it; empty when the branch adds nothing."""

        self._require_workspace(workspace_path)
        base = await self._base_ref(workspace_path, mirror_path)
        res = await self._git(
            f"git diff {base}...HEAD",
            ["diff", "--no-color", f"{base}...HEAD"],
            cwd=workspace_path,
            sanitize=False,
        )
        return res.get("stdout", "") or ""

    async def diff_stats(self, workspace_path: str, mirror_path: str) -> list[dict[str, Any]]:
        """Per-file added/removed line counts for the same range as ``diff``."""

        self._require_workspace(workspace_path)
        base = await self._base_ref(workspace_path, mirror_path)
        res = await self._git(
            f"git diff --numstat {base}...HEAD",
            ["diff", "--numstat", "-z", f"{base}...HEAD"],
            cwd=workspace_path,
            sanitize=False,
        )
        return _parse_git_numstat(res.get("stdout", "") or "")


__all__ = ["DiffReader"]
