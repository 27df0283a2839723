"""The workspace lifecycle as the task orchestrator sees it.

``WorkspaceService`` composes the mirror store, provisioner, sync engine,
publisher and diff reader behind identifiers the orchestrator already has
(tenant, task, owner/repo). It keeps no state of its own: everything it needs
after a restart is recovered from the on-disk layout.
"""

from __future__ import annotations

import glob
import os
from typing import Any, List, Optional, Union

from . import config
from ._shared import RunGit
from .diff import DiffReader
from .exceptions import GitspacesError, WorkspaceNotFoundError
from .locks import LockTable
from .mirror import MirrorStore
from .models import ConflictReport, RepositoryIdentity, Workspace, WorkspaceStatus
from .paths import (
    task_branch_name,
    validate_branch_name,
    validate_identity,
    validate_repo_name,
    validate_task_id,
    validate_tenant_id,
)
from .provisioner import WorkspaceProvisioner, _repo_name_from_mirror
from .publisher import ChangePublisher
from .sync import SyncEngine

LOGGER = config.BASE_LOGGER.getChild("service")


class WorkspaceService:
    def __init__(
        self,
        data_dir: Optional[str] = None,
        *,
        remote_base: Optional[str] = None,
        bare: Optional[bool] = None,
        branch_prefix: Optional[str] = None,
        run_git: Optional[RunGit] = None,
        locks: Optional[LockTable] = None,
    ) -> None:
        self.mirrors = MirrorStore(
            data_dir, remote_base=remote_base, bare=bare, run_git=run_git, locks=locks
        )
        self.provisioner = WorkspaceProvisioner(self.mirrors)
        self.sync = SyncEngine(self.mirrors)
        self.publisher = ChangePublisher(self.provisioner, self.sync)
        self.diffs = DiffReader(self.mirrors)
        self.branch_prefix = branch_prefix

    @property
    def data_dir(self) -> str:
        return self.mirrors.data_dir

    async def _mirror_for(self, workspace_path: str) -> str:
        if not os.path.isdir(workspace_path):
            raise WorkspaceNotFoundError(workspace_path)
        mirror = await self.provisioner.mirror_for(workspace_path)
        if not mirror or not os.path.isdir(mirror):
            raise GitspacesError(f"Workspace {workspace_path} is not linked to a mirror")
        return mirror

    async def ensure_workspace(
        self,
        tenant_id: Optional[str],
        task_id: str,
        owner: str,
        repo: str,
        credential: str = "",
        branch: Optional[str] = None,
    ) -> Workspace:
        """Ensure the mirror is current and the task's workspace exists."""

        identity = validate_identity(RepositoryIdentity(owner=owner, name=repo))
        task_id = validate_task_id(task_id)
        tenant_id = validate_tenant_id(tenant_id)
        if branch:
            branch = validate_branch_name(branch)
        else:
            branch = task_branch_name(task_id, prefix=self.branch_prefix)

        mirror = await self.mirrors.ensure(identity, credential)
        path = await self.provisioner.create(mirror, tenant_id, task_id, branch)
        # An existing workspace keeps whatever branch it was created with.
        current = await self.provisioner.current_branch(path)
        if current != branch:
            LOGGER.warning(
                "Workspace %s is on %s, not the requested %s", path, current, branch
            )
        return Workspace(
            task_id=task_id, repo=identity, path=path, branch=current, tenant_id=tenant_id
        )

    async def publish_changes(self, workspace_path: str, message: str, credential: str = "") -> bool:
        await self._mirror_for(workspace_path)
        return await self.publisher.commit_and_push(workspace_path, message, credential)

    async def get_diff(self, workspace_path: str) -> str:
        mirror = await self._mirror_for(workspace_path)
        return await self.diffs.diff(workspace_path, mirror)

    async def get_diff_stats(self, workspace_path: str) -> list[dict[str, Any]]:
        mirror = await self._mirror_for(workspace_path)
        return await self.diffs.diff_stats(workspace_path, mirror)

    async def workspace_status(self, workspace_path: str) -> WorkspaceStatus:
        return await self.sync.state(workspace_path)

    async def sync_with_default(
        self, workspace_path: str, credential: str = ""
    ) -> Optional[ConflictReport]:
        mirror = await self._mirror_for(workspace_path)
        return await self.sync.sync(workspace_path, mirror, credential)

    async def abort_sync(self, workspace_path: str) -> None:
        await self.sync.abort(workspace_path)

    async def commit_resolution(
        self, workspace_path: str, message: str = "", credential: str = ""
    ) -> None:
        await self._mirror_for(workspace_path)
        await self.publisher.commit_merge_resolution(workspace_path, message, credential)

    async def merge_to_default(
        self,
        owner: str,
        repo: str,
        task_id: str,
        tenant_id: Optional[str] = None,
        credential: str = "",
    ) -> Union[str, ConflictReport]:
        """Land the task branch on the default branch and tear the workspace down."""

        identity = validate_identity(RepositoryIdentity(owner=owner, name=repo))
        path = self.provisioner.workspace_path(identity.name, task_id, tenant_id)
        mirror = await self._mirror_for(path)
        expected = self.mirrors.mirror_path(identity)
        if os.path.isdir(expected) and os.path.samefile(expected, mirror):
            mirror = expected
        return await self.publisher.merge_to_default(mirror, path, credential)

    def _teardown_candidates(
        self, tenant_id: Optional[str], task_id: str, repo: Optional[str]
    ) -> List[str]:
        if tenant_id is None or repo:
            repo_name = validate_repo_name(repo) if repo else ""
            return [self.provisioner.workspace_path(repo_name, task_id, tenant_id)]
        pattern = os.path.join(
            self.data_dir, "workspaces", tenant_id, "worktrees", f"*_{glob.escape(task_id)}"
        )
        return sorted(glob.glob(pattern))

    async def teardown_workspace(
        self, tenant_id: Optional[str], task_id: str, repo: Optional[str] = None
    ) -> List[str]:
        """Destroy the task's workspace(s). Returns the paths that were removed.

        In multi-tenant mode without ``repo``, every ``{repo}_{task}``
        workspace the tenant has for this task is removed.
        """

        task_id = validate_task_id(task_id)
        tenant_id = validate_tenant_id(tenant_id)
        removed: List[str] = []
        for path in self._teardown_candidates(tenant_id, task_id, repo):
            if not os.path.lexists(path):
                continue
            mirror = await self.provisioner.mirror_for(path)
            if (
                tenant_id is not None
                and not repo
                and mirror
                and os.path.basename(path) != f"{_repo_name_from_mirror(mirror)}_{task_id}"
            ):
                # The glob also matches another task whose id ends in "_<task>".
                continue
            await self.provisioner.destroy(path, mirror)
            removed.append(path)
        if not removed:
            LOGGER.info("No workspace found for task %s, nothing to tear down", task_id)
        return removed

    async def find_orphans(self) -> List[str]:
        return await self.provisioner.find_orphans()

    async def remove_orphans(self) -> List[str]:
        orphans = await self.find_orphans()
        for path in orphans:
            await self.provisioner.destroy(path)
        return orphans


__all__ = ["WorkspaceService"]
