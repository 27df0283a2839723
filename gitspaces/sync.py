"""Keeping a workspace branch current with the default branch.

A workspace is either clean, dirty, or conflicted (mid-merge). A sync that
hits conflicts returns a ``ConflictReport`` and leaves the workspace
mid-merge; from there the only ways forward are committing a resolution or
``abort``. Any other merge failure is raised as ``GitCommandError``.
"""

from __future__ import annotations

from typing import Optional

from . import config
from ._shared import _credential_secrets, _GitComponent, _looks_like_conflict
from .exceptions import MergeInProgressError
from .locks import LockTable
from .mirror import MirrorStore
from .models import ConflictReport, WorkspaceState, WorkspaceStatus
from .shell import _shell_error

LOGGER = config.BASE_LOGGER.getChild("sync")


def _parse_porcelain_z(stdout: str) -> tuple[str, ...]:
    """Paths from `git status --porcelain -z`.

    Each entry is `XY <path>`; renames and copies are followed by an extra
    entry holding the source path, which is skipped.
    """

    entries = stdout.split("\0")
    paths: list[str] = []
    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if len(entry) < 4:
            continue
        paths.append(entry[3:])
        if "R" in entry[:2] or "C" in entry[:2]:
            i += 1
    return tuple(paths)


class SyncEngine(_GitComponent):
    def __init__(self, mirrors: MirrorStore, *, locks: Optional[LockTable] = None) -> None:
        super().__init__(run_git=mirrors._run_git_fn, locks=locks or mirrors.locks)
        self.mirrors = mirrors

    async def state(self, workspace_path: str) -> WorkspaceStatus:
        self._require_workspace(workspace_path)
        markers = await self._git_state_markers(workspace_path)
        branch_res = await self._git_raw(["branch", "--show-current"], cwd=workspace_path)
        branch = (branch_res.get("stdout", "") or "").strip() or None

        status = await self._git(
            "git status",
            ["-c", "core.quotePath=false", "status", "--porcelain", "-z"],
            cwd=workspace_path,
            sanitize=False,
        )
        changed = _parse_porcelain_z(status.get("stdout", "") or "")

        if markers["merge_in_progress"]:
            unmerged = tuple(await self._unmerged_files(workspace_path))
            return WorkspaceStatus(
                state=WorkspaceState.CONFLICTED,
                branch=branch,
                unmerged_files=unmerged,
                changed_files=changed,
            )
        return WorkspaceStatus(
            state=WorkspaceState.DIRTY if changed else WorkspaceState.CLEAN,
            branch=branch,
            changed_files=changed,
        )

    async def ensure_not_mid_merge(self, workspace_path: str) -> None:
        markers = await self._git_state_markers(workspace_path)
        if markers["merge_in_progress"]:
            raise MergeInProgressError(workspace_path, await self._unmerged_files(workspace_path))

    async def sync(
        self,
        workspace_path: str,
        mirror_path: str,
        credential: str = "",
        *,
        timeout_seconds: Optional[float] = None,
    ) -> Optional[ConflictReport]:
        """Merge the default branch into the workspace branch.

        Returns ``None`` when the merge succeeded (or there was nothing to
        merge) and a ``ConflictReport`` when files were left unmerged.
        """

        self._require_workspace(workspace_path)
        await self.ensure_not_mid_merge(workspace_path)

        default_branch = await self.mirrors.default_branch(mirror_path)

        # The fetch updates remote-tracking refs shared with the mirror.
        async with self.locks.lock_for(mirror_path):
            fetch = await self._git_raw(
                [
                    *(await self._auth_args(workspace_path, credential)),
                    "fetch",
                    "origin",
                    default_branch,
                ],
                cwd=workspace_path,
                timeout_seconds=self._network_timeout(timeout_seconds),
                secrets=_credential_secrets(credential),
            )
        if fetch.get("exit_code") != 0 or fetch.get("timed_out"):
            LOGGER.warning(
                "Fetch of %s failed in %s, merging what is already local: %s",
                default_branch,
                workspace_path,
                (fetch.get("stderr") or fetch.get("stdout") or "").strip(),
            )

        merge_ref = await self.mirrors.default_base_ref(workspace_path, default_branch)
        return await self._merge(workspace_path, merge_ref)

    async def _merge(self, repo_path: str, ref: str) -> Optional[ConflictReport]:
        args = ["merge", "--no-edit", ref]
        res = await self._git_raw(args, cwd=repo_path)
        if res.get("exit_code") == 0 and not res.get("timed_out"):
            LOGGER.info("Merged %s into %s", ref, repo_path)
            return None

        if not res.get("timed_out") and _looks_like_conflict(res):
            files = await self._unmerged_files(repo_path)
            if files:
                LOGGER.info("Merge conflict in %s: %s", repo_path, ", ".join(files))
                return ConflictReport(workspace_path=repo_path, conflicted_files=tuple(files))
        raise _shell_error(f"git merge {ref}", res, args)

    async def abort(self, workspace_path: str) -> None:
        """Restore the workspace to its state before the merge started."""

        self._require_workspace(workspace_path)
        markers = await self._git_state_markers(workspace_path)
        if not markers["merge_in_progress"]:
            LOGGER.info("No merge in progress in %s, nothing to abort", workspace_path)
            return
        await self._git("git merge --abort", ["merge", "--abort"], cwd=workspace_path)
        LOGGER.info("Aborted merge in %s", workspace_path)


__all__ = ["SyncEngine"]
