"""gitspaces MCP server entry point.

Exposes the workspace lifecycle (ensure, publish, diff, sync, merge-back,
teardown) as MCP tools for an agent orchestrator. The transport defaults to
stdio; set ``GITSPACES_TRANSPORT`` to ``sse`` or ``streamable-http`` to serve
over HTTP instead.
"""

from __future__ import annotations

import os

from gitspaces.config import BASE_LOGGER, configure_logging
from gitspaces.server import (  # noqa: F401
    abort_sync,
    commit_resolution,
    ensure_workspace,
    find_orphans,
    get_diff,
    mcp,
    merge_to_default,
    publish_changes,
    sync_with_default,
    teardown_workspace,
    workspace_status,
)

TRANSPORTS = ("stdio", "sse", "streamable-http")


def main() -> None:
    configure_logging()
    transport = os.environ.get("GITSPACES_TRANSPORT", "stdio").strip().lower()
    if transport not in TRANSPORTS:
        raise SystemExit(
            f"Unsupported GITSPACES_TRANSPORT {transport!r}; expected one of {', '.join(TRANSPORTS)}"
        )
    BASE_LOGGER.info("Starting gitspaces MCP server (transport=%s)", transport)
    mcp.run(transport=transport)


if __name__ == "__main__":
    main()
