"""Committing, pushing and landing task branches."""

from __future__ import annotations

import os
import shutil
import tempfile
from typing import Optional, Union

from . import config
from ._shared import _credential_secrets, _GitComponent
from .exceptions import GitCommandError, MergeInProgressError, UsageError
from .locks import LockTable
from .models import ConflictReport
from .provisioner import WorkspaceProvisioner
from .shell import _shell_error
from .sync import SyncEngine

LOGGER = config.BASE_LOGGER.getChild("publisher")


class ChangePublisher(_GitComponent):
    def __init__(
        self,
        provisioner: WorkspaceProvisioner,
        sync: SyncEngine,
        *,
        locks: Optional[LockTable] = None,
    ) -> None:
        super().__init__(run_git=provisioner._run_git_fn, locks=locks or provisioner.locks)
        self.provisioner = provisioner
        self.mirrors = provisioner.mirrors
        self.sync = sync

    async def commit_and_push(
        self,
        workspace_path: str,
        message: str,
        credential: str = "",
        *,
        timeout_seconds: Optional[float] = None,
    ) -> bool:
        """Stage everything, commit and push. Returns False when nothing was staged."""

        if not isinstance(message, str) or not message.strip():
            raise UsageError("Commit message must be a non-empty string")
        self._require_workspace(workspace_path)
        await self.sync.ensure_not_mid_merge(workspace_path)

        await self._git("git add", ["add", "-A"], cwd=workspace_path)
        quiet_args = ["diff", "--cached", "--quiet"]
        staged = await self._git_raw(quiet_args, cwd=workspace_path)
        if staged.get("exit_code") == 0:
            LOGGER.info("No changes to commit in %s", workspace_path)
            return False
        if staged.get("exit_code") != 1:
            raise _shell_error("git diff --cached", staged, quiet_args)

        await self._git("git commit", ["commit", "-m", message], cwd=workspace_path)
        await self.push_branch(workspace_path, credential, timeout_seconds=timeout_seconds)
        LOGGER.info("Committed and pushed %s", workspace_path)
        return True

    async def commit_merge_resolution(
        self,
        workspace_path: str,
        message: str = "",
        credential: str = "",
        *,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        """Conclude a conflicted sync once the files have been fixed."""

        self._require_workspace(workspace_path)
        markers = await self._git_state_markers(workspace_path)
        if not markers["merge_in_progress"]:
            raise UsageError(f"No merge in progress in {workspace_path}")

        await self._git("git add", ["add", "-A"], cwd=workspace_path)
        unmerged = await self._unmerged_files(workspace_path)
        if unmerged:
            raise MergeInProgressError(workspace_path, unmerged)

        args = ["commit", "--no-edit"]
        if isinstance(message, str) and message.strip():
            args += ["-m", message]
        await self._git("git commit", args, cwd=workspace_path)
        await self.push_branch(workspace_path, credential, timeout_seconds=timeout_seconds)
        LOGGER.info("Committed and pushed merge resolution in %s", workspace_path)

    async def push_branch(
        self,
        workspace_path: str,
        credential: str = "",
        *,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        """Push the current branch, creating its upstream if absent."""

        self._require_workspace(workspace_path)
        mirror_path = await self.provisioner.mirror_for(workspace_path)
        # Pushing updates remote-tracking refs shared with the mirror.
        async with self.locks.lock_for(mirror_path or workspace_path):
            await self._git(
                "git push",
                [*(await self._auth_args(workspace_path, credential)), "push", "-u", "origin", "HEAD"],
                cwd=workspace_path,
                timeout_seconds=self._network_timeout(timeout_seconds),
                secrets=_credential_secrets(credential),
            )

    async def _is_bare(self, repo_path: str) -> bool:
        res = await self._git("Inspect mirror", ["rev-parse", "--is-bare-repository"], cwd=repo_path)
        return (res.get("stdout", "") or "").strip() == "true"

    async def _abort_quietly(self, repo_path: str) -> None:
        res = await self._git_raw(["merge", "--abort"], cwd=repo_path)
        if res.get("exit_code") != 0:
            LOGGER.warning(
                "git merge --abort failed in %s: %s",
                repo_path,
                (res.get("stderr") or res.get("stdout") or "").strip(),
            )

    async def _add_integration_worktree(self, mirror_path: str, base_ref: str) -> str:
        parent, leaf = os.path.split(os.path.normpath(mirror_path))
        path = tempfile.mkdtemp(prefix=f".{leaf}.integrate-", dir=parent)
        try:
            await self._git(
                "git worktree add",
                ["worktree", "add", "--detach", path, base_ref],
                cwd=mirror_path,
            )
        except BaseException:
            shutil.rmtree(path, ignore_errors=True)
            raise
        return path

    async def _remove_integration_worktree(self, mirror_path: str, path: str) -> None:
        res = await self._git_raw(["worktree", "remove", "--force", path], cwd=mirror_path)
        if res.get("exit_code") != 0:
            LOGGER.warning(
                "git worktree remove failed for %s: %s",
                path,
                (res.get("stderr") or res.get("stdout") or "").strip(),
            )
            shutil.rmtree(path, ignore_errors=True)
            await self.provisioner._prune(mirror_path)

    async def merge_to_default(
        self,
        mirror_path: str,
        workspace_path: str,
        credential: str = "",
        *,
        timeout_seconds: Optional[float] = None,
    ) -> Union[str, ConflictReport]:
        """Land the workspace branch on the default branch.

        Returns the merged branch name, or a ``ConflictReport`` scoped to the
        mirror (whose merge has already been aborted). The workspace and the
        task branch are deleted only after the default branch was pushed.
        """

        self._require_workspace(workspace_path)
        await self.sync.ensure_not_mid_merge(workspace_path)
        branch = await self.provisioner.current_branch(workspace_path)
        timeout = self._network_timeout(timeout_seconds)
        secrets = _credential_secrets(credential)

        async with self.locks.lock_for(mirror_path):
            default_branch = await self.mirrors.default_branch(mirror_path)
            if branch == default_branch:
                raise UsageError(f"Workspace is already on the default branch {default_branch!r}")
            auth = await self._auth_args(mirror_path, credential)
            bare = await self._is_bare(mirror_path)

            if bare:
                # A bare mirror has no checkout; merge in a throwaway detached worktree.
                base_ref = await self.mirrors.default_base_ref(mirror_path, default_branch)
                integration_path = await self._add_integration_worktree(mirror_path, base_ref)
            else:
                integration_path = mirror_path
                await self._git(
                    f"git checkout {default_branch}", ["checkout", default_branch], cwd=mirror_path
                )

            try:
                await self._git(
                    "git pull",
                    [*auth, "pull", "--no-rebase", "--no-edit", "origin", default_branch],
                    cwd=integration_path,
                    timeout_seconds=timeout,
                    secrets=secrets,
                )
                LOGGER.info("Merging %s into %s", branch, default_branch)
                try:
                    conflict = await self.sync._merge(integration_path, branch)
                except GitCommandError:
                    if (await self._git_state_markers(integration_path))["merge_in_progress"]:
                        await self._abort_quietly(integration_path)
                    raise
                if conflict is not None:
                    await self._abort_quietly(integration_path)
                    LOGGER.info(
                        "Merge of %s into %s conflicts: %s",
                        branch,
                        default_branch,
                        ", ".join(conflict.conflicted_files),
                    )
                    return ConflictReport(
                        workspace_path=mirror_path,
                        conflicted_files=conflict.conflicted_files,
                    )

                await self._git(
                    "git push",
                    [*auth, "push", "origin", f"HEAD:refs/heads/{default_branch}"],
                    cwd=integration_path,
                    timeout_seconds=timeout,
                    secrets=secrets,
                )
                LOGGER.info("Pushed %s to origin", default_branch)

                if bare:
                    update = await self._git_raw(
                        ["update-ref", f"refs/heads/{default_branch}", "HEAD"],
                        cwd=integration_path,
                    )
                    if update.get("exit_code") != 0:
                        LOGGER.warning(
                            "Could not move local %s in %s: %s",
                            default_branch,
                            mirror_path,
                            (update.get("stderr") or "").strip(),
                        )
            finally:
                if bare:
                    await self._remove_integration_worktree(mirror_path, integration_path)

            delete = await self._git_raw(
                [*auth, "push", "origin", "--delete", branch],
                cwd=mirror_path,
                timeout_seconds=timeout,
                secrets=secrets,
            )
            if delete.get("exit_code") != 0:
                LOGGER.warning(
                    "Failed to delete remote branch %s (may not exist): %s",
                    branch,
                    (delete.get("stderr") or delete.get("stdout") or "").strip(),
                )
            else:
                LOGGER.info("Deleted remote branch %s", branch)

        # The branch cannot be deleted while a worktree still has it checked out.
        await self.provisioner.destroy(workspace_path, mirror_path)

        async with self.locks.lock_for(mirror_path):
            await self._delete_local_branch(mirror_path, branch)

        LOGGER.info("Landed %s on %s", branch, default_branch)
        return branch

    async def _delete_local_branch(self, mirror_path: str, branch: str) -> None:
        res = await self._git_raw(["branch", "-D", branch], cwd=mirror_path)
        if res.get("exit_code") != 0:
            LOGGER.warning(
                "Failed to delete local branch %s: %s",
                branch,
                (res.get("stderr") or res.get("stdout") or "").strip(),
            )
        else:
            LOGGER.info("Deleted local branch %s", branch)
        tracking = f"refs/remotes/origin/{branch}"
        if await self._ref_exists(mirror_path, tracking):
            await self._git_raw(["update-ref", "-d", tracking], cwd=mirror_path)


__all__ = ["ChangePublisher"]
