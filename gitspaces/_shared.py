"""Shared plumbing for the mirror, workspace, sync, publish and diff layers."""

from __future__ import annotations

import os
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import quote

from . import config
from .exceptions import WorkspaceNotFoundError
from .locks import MIRROR_LOCKS, LockTable
from .paths import auth_config_args
from .shell import _run_git, _run_git_ok

RunGit = Callable[..., Awaitable[Dict[str, Any]]]


def _credential_secrets(credential: Optional[str]) -> List[str]:
    if not credential:
        return []
    return [credential, quote(credential, safe="")]


def _stdout_lines(result: Mapping[str, Any]) -> List[str]:
    return [line.strip() for line in (result.get("stdout", "") or "").splitlines() if line.strip()]


def _nul_fields(result: Mapping[str, Any]) -> List[str]:
    """Split ``-z`` output on NUL, keeping each path exactly as git wrote it."""

    return [field for field in (result.get("stdout", "") or "").split("\0") if field]


class _GitComponent:
    """Base for components that drive git through an injectable runner."""

    def __init__(self, *, run_git: Optional[RunGit] = None, locks: Optional[LockTable] = None) -> None:
        self._run_git_fn = run_git
        self.locks = locks or MIRROR_LOCKS

    @property
    def run_git(self) -> RunGit:
        # Resolved lazily so tests can monkeypatch gitspaces.shell._run_git.
        if self._run_git_fn is not None:
            return self._run_git_fn
        from . import shell

        return getattr(shell, "_run_git", _run_git)

    async def _git(
        self,
        action: str,
        args: Sequence[str],
        *,
        cwd: Optional[str],
        timeout_seconds: Optional[float] = None,
        secrets: Iterable[str] = (),
        sanitize: bool = True,
    ) -> Dict[str, Any]:
        return await _run_git_ok(
            self.run_git,
            action,
            args,
            cwd=cwd,
            timeout_seconds=timeout_seconds,
            secrets=secrets,
            sanitize=sanitize,
        )

    async def _git_raw(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[str],
        timeout_seconds: Optional[float] = None,
        secrets: Iterable[str] = (),
        sanitize: bool = True,
    ) -> Dict[str, Any]:
        return await self.run_git(
            args,
            cwd=cwd,
            timeout_seconds=timeout_seconds,
            env=None,
            secrets=list(secrets),
            sanitize=sanitize,
        )

    @staticmethod
    def _network_timeout(timeout_seconds: Optional[float]) -> float:
        return config.NETWORK_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds

    async def _ref_exists(self, cwd: str, ref: str) -> bool:
        res = await self._git_raw(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=cwd)
        return res.get("exit_code") == 0

    async def _origin_url(self, cwd: str) -> str:
        res = await self._git_raw(["config", "--get", "remote.origin.url"], cwd=cwd)
        return (res.get("stdout", "") or "").strip() if res.get("exit_code") == 0 else ""

    async def _auth_args(self, cwd: str, credential: Optional[str]) -> List[str]:
        if not credential:
            return []
        return auth_config_args(await self._origin_url(cwd), credential)

    async def _unmerged_files(self, cwd: str) -> List[str]:
        res = await self._git(
            "List unmerged files",
            ["-c", "core.quotePath=false", "diff", "--name-only", "-z", "--diff-filter=U"],
            cwd=cwd,
            sanitize=False,
        )
        return sorted(set(_nul_fields(res)))

    async def _git_dir(self, cwd: str) -> str:
        res = await self._git("Resolve git dir", ["rev-parse", "--absolute-git-dir"], cwd=cwd)
        return (res.get("stdout", "") or "").strip()

    async def _git_state_markers(self, repo_dir: str) -> Dict[str, bool]:
        # Worktrees keep MERGE_HEAD in their private git dir, not in ``.git``.
        git_dir = await self._git_dir(repo_dir)
        return {
            "merge_in_progress": os.path.exists(os.path.join(git_dir, "MERGE_HEAD")),
            "rebase_in_progress": os.path.isdir(os.path.join(git_dir, "rebase-apply"))
            or os.path.isdir(os.path.join(git_dir, "rebase-merge")),
            "cherry_pick_in_progress": os.path.exists(os.path.join(git_dir, "CHERRY_PICK_HEAD")),
        }

    @staticmethod
    def _require_workspace(workspace_path: str) -> str:
        if not os.path.isdir(workspace_path):
            raise WorkspaceNotFoundError(workspace_path)
        return workspace_path


def _looks_like_conflict(result: Mapping[str, Any]) -> bool:
    text = f"{result.get('stdout', '')}\n{result.get('stderr', '')}"
    return "CONFLICT" in text or "Automatic merge failed" in text


__all__ = ["RunGit", "_GitComponent", "_credential_secrets", "_looks_like_conflict", "_nul_fields", "_stdout_lines"]
