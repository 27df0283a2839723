"""Multi-tenant git workspaces carved out of shared repository mirrors.

The core components are importable from the package root. The MCP tool surface
(``gitspaces.server``) is loaded lazily so embedding the service does not pull
in the server framework.
"""

from __future__ import annotations

import importlib
from typing import Any

from .diff import DiffReader
from .exceptions import (
    GitCommandError,
    GitspacesError,
    GitTimeoutError,
    MergeInProgressError,
    UsageError,
    WorkspaceNotFoundError,
)
from .mirror import MirrorStore
from .models import ConflictReport, RepositoryIdentity, Workspace, WorkspaceState, WorkspaceStatus
from .provisioner import WorkspaceProvisioner
from .publisher import ChangePublisher
from .service import WorkspaceService
from .sync import SyncEngine

__all__ = [
    "ChangePublisher",
    "ConflictReport",
    "DiffReader",
    "GitCommandError",
    "GitTimeoutError",
    "GitspacesError",
    "MergeInProgressError",
    "MirrorStore",
    "RepositoryIdentity",
    "SyncEngine",
    "UsageError",
    "Workspace",
    "WorkspaceNotFoundError",
    "WorkspaceProvisioner",
    "WorkspaceService",
    "WorkspaceState",
    "WorkspaceStatus",
    "server",
]


def __getattr__(name: str) -> Any:
    if name == "server":
        return importlib.import_module(f"{__name__}.server")
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + __all__)
