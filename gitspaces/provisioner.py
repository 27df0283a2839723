"""Per-task worktrees carved out of a shared mirror."""

from __future__ import annotations

import glob
import os
import re
import shutil
from typing import Dict, List, Optional, Set

from . import config
from ._shared import _GitComponent, _stdout_lines
from .exceptions import GitspacesError, UsageError
from .locks import LockTable
from .mirror import MirrorStore
from .paths import validate_branch_name, validate_task_id, validate_tenant_id, workspace_path
from .shell import _shell_error

LOGGER = config.BASE_LOGGER.getChild("provisioner")

_BRANCH_EXISTS_RE = re.compile(r"a branch named .+ already exists")


def _repo_name_from_mirror(mirror_path: str) -> str:
    leaf = os.path.basename(os.path.normpath(mirror_path))
    return leaf[: -len(".git")] if leaf.endswith(".git") else leaf


class WorkspaceProvisioner(_GitComponent):
    """Creates and destroys workspaces bound to one branch each.

    Worktree registration lives in the mirror, so create and destroy take the
    mirror lock; the workspace directory itself belongs to one task only.
    """

    def __init__(
        self,
        mirrors: MirrorStore,
        *,
        data_dir: Optional[str] = None,
        locks: Optional[LockTable] = None,
    ) -> None:
        super().__init__(run_git=mirrors._run_git_fn, locks=locks or mirrors.locks)
        self.mirrors = mirrors
        self.data_dir = os.path.abspath(data_dir or mirrors.data_dir)

    def workspace_path(
        self, repo_name: str, task_id: str, tenant_id: Optional[str] = None
    ) -> str:
        return workspace_path(
            self.data_dir,
            repo_name,
            validate_task_id(task_id),
            validate_tenant_id(tenant_id),
        )

    async def create(
        self,
        mirror_path: str,
        tenant_id: Optional[str],
        task_id: str,
        branch_name: str,
    ) -> str:
        """Return the workspace path, creating the worktree if it does not exist."""

        branch = validate_branch_name(branch_name)
        path = self.workspace_path(_repo_name_from_mirror(mirror_path), task_id, tenant_id)
        if os.path.exists(path):
            LOGGER.info("Workspace already exists at %s", path)
            return path

        async with self.locks.lock_for(mirror_path):
            if os.path.exists(path):
                LOGGER.info("Workspace already exists at %s", path)
                return path

            default_branch = await self.mirrors.default_branch(mirror_path)
            if branch == default_branch:
                raise UsageError(
                    f"Task branch must differ from the default branch {default_branch!r}"
                )

            os.makedirs(os.path.dirname(path), exist_ok=True)
            await self._prune(mirror_path)
            base_ref = await self.mirrors.default_base_ref(mirror_path, default_branch)
            has_local = await self._ref_exists(mirror_path, f"refs/heads/{branch}")
            if not has_local and await self._ref_exists(
                mirror_path, f"refs/remotes/origin/{branch}"
            ):
                # Pushed by an earlier attempt whose local branch is gone.
                LOGGER.info("Branch %s exists only on origin, continuing from it", branch)
                base_ref = f"origin/{branch}"
            LOGGER.info(
                "Creating workspace %s on branch %s from %s", path, branch, base_ref
            )

            args = ["worktree", "add", "--no-track", "-b", branch, path, base_ref]
            res = await self._git_raw(args, cwd=mirror_path)
            if res.get("exit_code") != 0:
                detail = f"{res.get('stderr', '')}\n{res.get('stdout', '')}"
                if not _BRANCH_EXISTS_RE.search(detail):
                    raise _shell_error("git worktree add", res, args)
                # A retried task finds its branch from the previous attempt.
                LOGGER.warning("Branch %s already exists, attaching workspace to it", branch)
                await self._git(
                    "git worktree add", ["worktree", "add", path, branch], cwd=mirror_path
                )

        LOGGER.info("Workspace ready at %s", path)
        return path

    async def destroy(self, workspace_path: str, mirror_path: Optional[str] = None) -> None:
        """Remove the workspace directory and prune the mirror's worktree registry."""

        if not os.path.lexists(workspace_path):
            LOGGER.info("Workspace %s does not exist, nothing to remove", workspace_path)
            return

        if mirror_path is None:
            mirror_path = await self.mirror_for(workspace_path)

        async with self.locks.lock_for(mirror_path or workspace_path):
            LOGGER.info("Removing workspace %s", workspace_path)
            if os.path.isdir(workspace_path) and not os.path.islink(workspace_path):
                shutil.rmtree(workspace_path)
            else:
                os.remove(workspace_path)
            if mirror_path:
                await self._prune(mirror_path)
            else:
                LOGGER.warning(
                    "No mirror known for %s; worktree registry was not pruned", workspace_path
                )

    async def _prune(self, mirror_path: str) -> None:
        res = await self._git_raw(["worktree", "prune"], cwd=mirror_path)
        if res.get("exit_code") != 0:
            LOGGER.warning(
                "git worktree prune failed in %s: %s",
                mirror_path,
                (res.get("stderr") or res.get("stdout") or "").strip(),
            )

    async def current_branch(self, workspace_path: str) -> str:
        self._require_workspace(workspace_path)
        res = await self._git(
            "git branch --show-current", ["branch", "--show-current"], cwd=workspace_path
        )
        branch = (res.get("stdout", "") or "").strip()
        if not branch:
            raise GitspacesError(f"Workspace {workspace_path} is not on a branch (detached HEAD)")
        return branch

    async def mirror_for(self, workspace_path: str) -> Optional[str]:
        """Recover the mirror path from a workspace's shared git dir."""

        if not os.path.isdir(workspace_path):
            return None
        res = await self._git_raw(["rev-parse", "--git-common-dir"], cwd=workspace_path)
        if res.get("exit_code") != 0:
            return None
        common = (res.get("stdout", "") or "").strip()
        if not common:
            return None
        common = os.path.normpath(os.path.join(workspace_path, common))
        if os.path.basename(common) == ".git":
            return os.path.dirname(common)
        return common

    def _candidate_workspaces(self) -> List[str]:
        patterns = [
            os.path.join(self.data_dir, "workspaces", "*", "worktrees", "*"),
            os.path.join(self.data_dir, "worktrees", "task-*"),
        ]
        found: List[str] = []
        for pattern in patterns:
            found.extend(p for p in glob.glob(pattern) if os.path.isdir(p))
        return sorted(found)

    async def _registered_worktrees(self, mirror_path: str) -> Set[str]:
        res = await self._git_raw(["worktree", "list", "--porcelain"], cwd=mirror_path)
        if res.get("exit_code") != 0:
            return set()
        return {
            os.path.realpath(line[len("worktree "):])
            for line in _stdout_lines(res)
            if line.startswith("worktree ")
        }

    async def find_orphans(self) -> List[str]:
        """Workspace directories that no mirror knows about."""

        registered: Dict[str, Set[str]] = {}
        orphans: List[str] = []
        for path in self._candidate_workspaces():
            mirror = None
            if os.path.isfile(os.path.join(path, ".git")):
                mirror = await self.mirror_for(path)
            if not mirror or not os.path.isdir(mirror):
                orphans.append(path)
                continue
            if mirror not in registered:
                registered[mirror] = await self._registered_worktrees(mirror)
            if os.path.realpath(path) not in registered[mirror]:
                orphans.append(path)
        return orphans


__all__ = ["WorkspaceProvisioner"]
