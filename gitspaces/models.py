"""Value types shared by the mirror, workspace, sync and publish layers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .exceptions import UsageError


@dataclass(frozen=True)
class RepositoryIdentity:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, full_name: str) -> "RepositoryIdentity":
        """Build an identity from ``owner/repo``; validation happens in ``paths``."""

        owner, sep, name = (full_name or "").strip().partition("/")
        if not sep:
            raise UsageError(f"Repository must look like 'owner/repo', got {full_name!r}")
        return cls(owner=owner, name=name.removesuffix(".git"))


@dataclass(frozen=True)
class Workspace:
    task_id: str
    repo: RepositoryIdentity
    path: str
    branch: str
    tenant_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "task_id": self.task_id,
            "repo": self.repo.full_name,
            "path": self.path,
            "branch": self.branch,
        }


@dataclass(frozen=True)
class ConflictReport:
    """Files left unmerged by a sync or merge-back attempt.

    A report is an expected outcome, not an error: the repository at
    ``workspace_path`` is mid-merge (sync) or has already been restored
    (merge-back into the mirror).
    """

    workspace_path: str
    conflicted_files: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "conflict",
            "workspace_path": self.workspace_path,
            "conflicted_files": list(self.conflicted_files),
        }


class WorkspaceState(str, enum.Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    CONFLICTED = "conflicted"


@dataclass(frozen=True)
class WorkspaceStatus:
    state: WorkspaceState
    branch: Optional[str]
    unmerged_files: Tuple[str, ...] = ()
    changed_files: Tuple[str, ...] = ()

    @property
    def merge_in_progress(self) -> bool:
        return self.state is WorkspaceState.CONFLICTED


__all__ = [
    "ConflictReport",
    "RepositoryIdentity",
    "Workspace",
    "WorkspaceState",
    "WorkspaceStatus",
]
