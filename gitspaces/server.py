"""MCP tool surface over ``WorkspaceService``.

Every tool returns a JSON-friendly dict. Success payloads carry
``"status": "ok"``; a merge that stops on conflicts returns
``{"status": "conflict", "conflicted_files": [...]}``; failures are built by
``gitspaces.errors.structured_error``.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from . import config
from .errors import structured_error
from .models import ConflictReport
from .service import WorkspaceService

LOGGER = config.BASE_LOGGER.getChild("server")

mcp = FastMCP("gitspaces")

_SERVICE: Optional[WorkspaceService] = None


def get_service() -> WorkspaceService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = WorkspaceService()
    return _SERVICE


def _resolve_credential(credential: Optional[str]) -> str:
    """Return the explicit credential, else the first configured token, else ""."""

    if credential and credential.strip():
        return credential.strip()
    # Read on every call so rotated tokens are picked up without a restart.
    for env_var in config.GIT_TOKEN_ENV_VARS:
        candidate = (os.environ.get(env_var) or "").strip()
        if candidate:
            return candidate
    return ""


def _merge_payload(result: Optional[ConflictReport], **extra: Any) -> Dict[str, Any]:
    if isinstance(result, ConflictReport):
        return result.to_dict()
    return {"status": "ok", **extra}


@mcp.tool()
async def ensure_workspace(
    task_id: str,
    owner: str,
    repo: str,
    tenant_id: Optional[str] = None,
    branch: Optional[str] = None,
    credential: Optional[str] = None,
) -> Dict[str, Any]:
    """Clone or refresh the repository mirror and create the task's workspace."""

    try:
        ws = await get_service().ensure_workspace(
            tenant_id, task_id, owner, repo, _resolve_credential(credential), branch=branch
        )
    except Exception as exc:
        return structured_error(exc, context="ensure_workspace")
    return {"status": "ok", "workspace": ws.to_dict()}


@mcp.tool()
async def publish_changes(
    workspace_path: str, message: str, credential: Optional[str] = None
) -> Dict[str, Any]:
    """Stage all changes, commit them and push the task branch."""

    try:
        committed = await get_service().publish_changes(
            workspace_path, message, _resolve_credential(credential)
        )
    except Exception as exc:
        return structured_error(exc, context="publish_changes")
    return {"status": "ok", "committed": committed}


@mcp.tool()
async def get_diff(workspace_path: str, include_stats: bool = False) -> Dict[str, Any]:
    """Show what the task branch changes relative to the default branch."""

    try:
        service = get_service()
        diff = await service.get_diff(workspace_path)
        payload: Dict[str, Any] = {"status": "ok", "diff": diff}
        if include_stats:
            payload["numstat"] = await service.get_diff_stats(workspace_path)
    except Exception as exc:
        return structured_error(exc, context="get_diff")
    return payload


@mcp.tool()
async def workspace_status(workspace_path: str) -> Dict[str, Any]:
    """Report whether the workspace is clean, dirty or mid-merge."""

    try:
        status = await get_service().workspace_status(workspace_path)
    except Exception as exc:
        return structured_error(exc, context="workspace_status")
    return {
        "status": "ok",
        "state": status.state.value,
        "branch": status.branch,
        "merge_in_progress": status.merge_in_progress,
        "changed_files": list(status.changed_files),
        "unmerged_files": list(status.unmerged_files),
    }


@mcp.tool()
async def sync_with_default(
    workspace_path: str, credential: Optional[str] = None
) -> Dict[str, Any]:
    """Merge the latest default branch into the workspace branch."""

    try:
        report = await get_service().sync_with_default(
            workspace_path, _resolve_credential(credential)
        )
    except Exception as exc:
        return structured_error(exc, context="sync_with_default")
    return _merge_payload(report, workspace_path=workspace_path)


@mcp.tool()
async def abort_sync(workspace_path: str) -> Dict[str, Any]:
    """Abandon an in-progress merge and restore the pre-sync state."""

    try:
        await get_service().abort_sync(workspace_path)
    except Exception as exc:
        return structured_error(exc, context="abort_sync")
    return {"status": "ok", "workspace_path": workspace_path}


@mcp.tool()
async def commit_resolution(
    workspace_path: str, message: str = "", credential: Optional[str] = None
) -> Dict[str, Any]:
    """Commit resolved conflicts and push the task branch."""

    try:
        await get_service().commit_resolution(
            workspace_path, message, _resolve_credential(credential)
        )
    except Exception as exc:
        return structured_error(exc, context="commit_resolution")
    return {"status": "ok", "workspace_path": workspace_path}


@mcp.tool()
async def merge_to_default(
    owner: str,
    repo: str,
    task_id: str,
    tenant_id: Optional[str] = None,
    credential: Optional[str] = None,
) -> Dict[str, Any]:
    """Land the task branch on the default branch, then remove the workspace."""

    try:
        result = await get_service().merge_to_default(
            owner, repo, task_id, tenant_id=tenant_id, credential=_resolve_credential(credential)
        )
    except Exception as exc:
        return structured_error(exc, context="merge_to_default")
    if isinstance(result, ConflictReport):
        return result.to_dict()
    return {"status": "ok", "merged_branch": result}


@mcp.tool()
async def teardown_workspace(
    task_id: str, tenant_id: Optional[str] = None, repo: Optional[str] = None
) -> Dict[str, Any]:
    """Remove the task's workspace directory and prune the mirror."""

    try:
        removed = await get_service().teardown_workspace(tenant_id, task_id, repo=repo)
    except Exception as exc:
        return structured_error(exc, context="teardown_workspace")
    return {"status": "ok", "removed": removed}


@mcp.tool()
async def find_orphans() -> Dict[str, Any]:
    """List workspace directories no mirror has registered."""

    try:
        orphans = await get_service().find_orphans()
    except Exception as exc:
        return structured_error(exc, context="find_orphans")
    return {"status": "ok", "orphans": orphans}


__all__ = [
    "abort_sync",
    "commit_resolution",
    "ensure_workspace",
    "find_orphans",
    "get_diff",
    "get_service",
    "mcp",
    "merge_to_default",
    "publish_changes",
    "sync_with_default",
    "teardown_workspace",
    "workspace_status",
]
