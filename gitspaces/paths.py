"""Deterministic on-disk layout, input validation and remote URLs.

Layout under the data dir::

    repos/{owner}/{repo}.git                      bare mirror
    repos/{owner}/{repo}                          non-bare mirror
    workspaces/{tenant}/worktrees/{repo}_{task}   multi-tenant workspace
    worktrees/task-{task}                         single-tenant workspace

These paths are part of the compatibility surface: cleanup tooling relies on
them staying stable across restarts.
"""

from __future__ import annotations

import os
import re
from typing import Optional
from urllib.parse import quote

from . import config
from .exceptions import UsageError
from .models import RepositoryIdentity

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_BRANCH_FORBIDDEN_RE = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def _validate_name(value: Optional[str], *, field: str, max_len: int = 100) -> str:
    if not isinstance(value, str) or not value.strip():
        raise UsageError(f"{field} must be a non-empty string")
    cleaned = value.strip()
    if len(cleaned) > max_len:
        raise UsageError(f"{field} is longer than {max_len} characters: {cleaned!r}")
    if not _NAME_RE.match(cleaned) or cleaned.endswith(".lock"):
        raise UsageError(
            f"{field} may only contain letters, digits, '.', '_' and '-' "
            f"and must start with a letter or digit: {cleaned!r}"
        )
    return cleaned


def validate_repo_name(name: Optional[str]) -> str:
    name = _validate_name(name, field="repo")
    if name.endswith(".git"):
        name = name[: -len(".git")]
        if not name:
            raise UsageError("repo must not be just '.git'")
    return name


def validate_identity(identity: RepositoryIdentity) -> RepositoryIdentity:
    owner = _validate_name(identity.owner, field="owner", max_len=39 * 2)
    return RepositoryIdentity(owner=owner, name=validate_repo_name(identity.name))


def validate_task_id(task_id: Optional[str]) -> str:
    return _validate_name(task_id, field="task_id")


def validate_tenant_id(tenant_id: Optional[str]) -> Optional[str]:
    """Return ``None`` for single-tenant mode, a validated id otherwise."""

    if tenant_id is None or (isinstance(tenant_id, str) and not tenant_id.strip()):
        return None
    return _validate_name(tenant_id, field="tenant_id")


def validate_branch_name(branch: Optional[str]) -> str:
    """Reject names ``git check-ref-format --branch`` would refuse."""

    if not isinstance(branch, str) or not branch.strip():
        raise UsageError("branch must be a non-empty string")
    name = branch.strip()
    problems = []
    if _BRANCH_FORBIDDEN_RE.search(name):
        problems.append("contains whitespace, control or special characters")
    if name.startswith(("-", "/")) or name.endswith(("/", ".", ".lock")):
        problems.append("has an invalid leading or trailing character")
    if ".." in name or "//" in name or "@{" in name or name == "@":
        problems.append("contains an invalid sequence")
    if any(part.startswith(".") for part in name.split("/")):
        problems.append("has a path component starting with '.'")
    if name == "HEAD":
        problems.append("is reserved")
    if problems:
        raise UsageError(f"Invalid branch name {name!r}: {', '.join(problems)}")
    return name


def task_branch_name(task_id: str, prefix: Optional[str] = None) -> str:
    task_id = validate_task_id(task_id)
    return validate_branch_name(f"{config.BRANCH_PREFIX if prefix is None else prefix}{task_id}")


def mirror_path(data_dir: str, identity: RepositoryIdentity, *, bare: bool) -> str:
    leaf = f"{identity.name}.git" if bare else identity.name
    return os.path.join(data_dir, "repos", identity.owner, leaf)


def workspace_path(
    data_dir: str,
    repo_name: str,
    task_id: str,
    tenant_id: Optional[str] = None,
) -> str:
    if tenant_id:
        return os.path.join(
            data_dir, "workspaces", tenant_id, "worktrees", f"{repo_name}_{task_id}"
        )
    return os.path.join(data_dir, "worktrees", f"task-{task_id}")


def _is_http_base(base: str) -> bool:
    return base.startswith("https://") or base.startswith("http://")


def remote_url(remote_base: str, identity: RepositoryIdentity) -> str:
    """Credential-free remote URL for ``identity``."""

    base = remote_base.rstrip("/")
    return f"{base}/{identity.owner}/{identity.name}.git"


def authenticated_url(plain: str, credential: str) -> str:
    """``plain`` with ``credential`` embedded; unchanged when none applies."""

    if not credential or not _is_http_base(plain):
        return plain
    scheme, _, rest = plain.partition("://")
    token = quote(credential, safe="")
    return f"{scheme}://x-access-token:{token}@{rest}"


def auth_config_args(plain: str, credential: str) -> list[str]:
    """``git -c`` arguments that swap in the authenticated URL for one process.

    The stored ``origin`` URL stays credential-free; the rewrite exists only
    on the command line of the network operation that needs it.
    """

    if not credential or not _is_http_base(plain):
        return []
    auth = authenticated_url(plain, credential)
    return ["-c", f"url.{auth}.insteadOf={plain}"]


__all__ = [
    "auth_config_args",
    "authenticated_url",
    "mirror_path",
    "remote_url",
    "task_branch_name",
    "validate_branch_name",
    "validate_identity",
    "validate_repo_name",
    "validate_task_id",
    "validate_tenant_id",
    "workspace_path",
]
