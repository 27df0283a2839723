"""Configuration and logging helpers for gitspaces."""

from __future__ import annotations

import logging
import os
import tempfile

# Custom log levels
# ------------------------------------------------------------------------------
#
# DETAILED: per-command git traces. More verbose than INFO, less noisy than
# full DEBUG.

DETAILED_LEVEL = 15


def _install_custom_log_levels() -> None:
    if not hasattr(logging, "DETAILED"):
        logging.addLevelName(DETAILED_LEVEL, "DETAILED")
        setattr(logging, "DETAILED", DETAILED_LEVEL)

    if not hasattr(logging.Logger, "detailed"):
        def detailed(self: logging.Logger, msg, *args, **kwargs):
            if self.isEnabledFor(DETAILED_LEVEL):
                self._log(DETAILED_LEVEL, msg, args, **kwargs)
        logging.Logger.detailed = detailed  # type: ignore[attr-defined]


def _resolve_log_level(level_name: str | None) -> int:
    if not level_name:
        return logging.INFO

    name = str(level_name).strip().upper()
    if not name:
        return logging.INFO

    # Numeric levels are allowed.
    if name.lstrip("-").isdigit():
        return int(name)

    if name == "DETAILED":
        return DETAILED_LEVEL

    return getattr(logging, name, logging.INFO)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


_install_custom_log_levels()

# Configuration and globals
# ------------------------------------------------------------------------------

# Root for mirrors (repos/), multi-tenant workspaces (workspaces/) and
# single-tenant worktrees (worktrees/). Paths below it must stay stable across
# restarts so orphan cleanup can find them.
DATA_DIR = os.environ.get(
    "GITSPACES_DATA_DIR",
    os.path.join(tempfile.gettempdir(), "gitspaces"),
)

REMOTE_BASE = os.environ.get("GITSPACES_REMOTE_BASE", "https://github.com").rstrip("/")
BARE_MIRRORS = _env_flag("GITSPACES_BARE_MIRRORS", True)
BRANCH_PREFIX = os.environ.get("GITSPACES_BRANCH_PREFIX", "agent/task-")

# Consulted in order when a tool call supplies no credential.
GIT_TOKEN_ENV_VARS = ("GITSPACES_GIT_TOKEN", "GITHUB_PAT", "GITHUB_TOKEN", "GH_TOKEN")

NETWORK_TIMEOUT_SECONDS = float(os.environ.get("GITSPACES_NETWORK_TIMEOUT_SECONDS", "600"))
LOCAL_TIMEOUT_SECONDS = float(os.environ.get("GITSPACES_LOCAL_TIMEOUT_SECONDS", "120"))

# Diagnostic text attached to GitCommandError. 0 disables clipping.
DIAGNOSTICS_MAX_CHARS = int(os.environ.get("GITSPACES_DIAGNOSTICS_MAX_CHARS", "4000"))

GIT_AUTHOR_NAME = os.environ.get("GIT_AUTHOR_NAME", "gitspaces")
GIT_AUTHOR_EMAIL = os.environ.get("GIT_AUTHOR_EMAIL", "gitspaces@localhost")
GIT_COMMITTER_NAME = os.environ.get("GIT_COMMITTER_NAME", GIT_AUTHOR_NAME)
GIT_COMMITTER_EMAIL = os.environ.get("GIT_COMMITTER_EMAIL", GIT_AUTHOR_EMAIL)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_STYLE = os.environ.get("LOG_STYLE", "color").lower()

# Default to a compact, scannable format.
LOG_FORMAT = os.environ.get(
    "LOG_FORMAT",
    "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)


class _ColorFormatter(logging.Formatter):
    """Level-colored formatter for console logs."""

    _C = {
        "DEBUG": "\x1b[36m",  # cyan
        "DETAILED": "\x1b[36m",  # cyan
        "INFO": "\x1b[32m",  # green
        "WARNING": "\x1b[33m",  # yellow
        "ERROR": "\x1b[31m",  # red
        "CRITICAL": "\x1b[35m",  # magenta
        "RESET": "\x1b[0m",
    }

    def __init__(self, fmt: str, *, use_color: bool) -> None:
        super().__init__(fmt)
        self._use_color = bool(use_color)

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting
        levelname = record.levelname
        if self._use_color and levelname in self._C:
            record.levelname = f"{self._C[levelname]}{levelname}{self._C['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def configure_logging() -> None:
    """Install the console handler once; later calls are no-ops."""

    root = logging.getLogger()
    if getattr(root, "_gitspaces_configured", False):
        return

    use_color = LOG_STYLE in {"color", "ansi", "colored"}

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(_ColorFormatter(LOG_FORMAT, use_color=use_color))

    logging.basicConfig(
        level=_resolve_log_level(LOG_LEVEL),
        handlers=[console_handler],
        force=True,
    )

    # Reduce noisy framework logs.
    for noisy in ("mcp", "mcp.server", "mcp.server.lowlevel.server"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    setattr(root, "_gitspaces_configured", True)


BASE_LOGGER = logging.getLogger("gitspaces")

__all__ = [
    "BARE_MIRRORS",
    "BASE_LOGGER",
    "BRANCH_PREFIX",
    "DATA_DIR",
    "DETAILED_LEVEL",
    "DIAGNOSTICS_MAX_CHARS",
    "GIT_AUTHOR_EMAIL",
    "GIT_AUTHOR_NAME",
    "GIT_COMMITTER_EMAIL",
    "GIT_COMMITTER_NAME",
    "GIT_TOKEN_ENV_VARS",
    "LOCAL_TIMEOUT_SECONDS",
    "LOG_FORMAT",
    "LOG_LEVEL",
    "LOG_STYLE",
    "NETWORK_TIMEOUT_SECONDS",
    "REMOTE_BASE",
    "configure_logging",
]
