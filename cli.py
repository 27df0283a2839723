from __future__ import annotations

import argparse
import asyncio
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any


def _load_project_version(pyproject_path: Path | None = None) -> str:
    """Best-effort loader for the project version from pyproject.toml.

    This avoids importing the server module (and its FastMCP wiring) just to
    answer a simple CLI query like `--version`.
    """
    if pyproject_path is None:
        pyproject_path = Path(__file__).with_name("pyproject.toml")

    try:
        import tomllib  # Python 3.11+
    except ImportError:  # pragma: no cover
        return "0.0.0"

    try:
        data = tomllib.loads(pyproject_path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError):
        return "0.0.0"

    project = data.get("project") or {}
    version = project.get("version")
    if isinstance(version, str) and version.strip():
        return version.strip()
    return "0.0.0"


def _check(name: str, level: str, message: str) -> dict[str, str]:
    return {"name": name, "level": level, "message": message}


def _collect_checks(data_dir: str) -> list[dict[str, Any]]:
    from gitspaces import config
    from gitspaces.shell import GIT_EXECUTABLE, _run_git

    checks: list[dict[str, Any]] = []

    if shutil.which(GIT_EXECUTABLE) is None:
        checks.append(_check("git", "error", f"{GIT_EXECUTABLE!r} was not found on PATH"))
    else:
        res = asyncio.run(_run_git(["--version"]))
        if res.get("exit_code") == 0:
            checks.append(_check("git", "ok", (res.get("stdout") or "").strip()))
        else:
            checks.append(_check("git", "error", (res.get("stderr") or "").strip()))

    try:
        os.makedirs(data_dir, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=data_dir):
            pass
        checks.append(_check("data_dir", "ok", f"{data_dir} is writable"))
    except OSError as exc:
        checks.append(_check("data_dir", "error", f"{data_dir} is not writable: {exc}"))

    if any(os.environ.get(name) for name in config.GIT_TOKEN_ENV_VARS):
        checks.append(_check("credential", "ok", "A fallback git token is configured"))
    else:
        checks.append(
            _check(
                "credential",
                "warning",
                "No fallback token set; callers must pass a credential for private repos",
            )
        )
    return checks


def _run_doctor(data_dir: str) -> int:
    """Run basic environment checks and print a human-readable summary."""
    checks = _collect_checks(data_dir)
    ok = sum(1 for c in checks if c.get("level") == "ok")
    warning = sum(1 for c in checks if c.get("level") == "warning")
    error = sum(1 for c in checks if c.get("level") == "error")
    status = "error" if error else ("warning" if warning else "ok")

    print(f"Status: {status}")
    print(f"Checks: ok={ok}, warning={warning}, error={error}")
    for check in checks:
        print(f"- [{check['level']}] {check['name']}: {check['message']}")

    return 0 if status != "error" else 1


def _run_paths(args: argparse.Namespace) -> int:
    from gitspaces import config
    from gitspaces.exceptions import UsageError
    from gitspaces.models import RepositoryIdentity
    from gitspaces.paths import mirror_path, task_branch_name, validate_identity, workspace_path

    bare = config.BARE_MIRRORS if args.bare is None else args.bare
    try:
        identity = validate_identity(RepositoryIdentity.parse(args.repo))
        print(f"mirror:    {mirror_path(args.data_dir, identity, bare=bare)}")
        if args.task:
            print(f"workspace: {workspace_path(args.data_dir, identity.name, args.task, args.tenant)}")
            print(f"branch:    {task_branch_name(args.task)}")
    except UsageError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    return 0


def _run_orphans(args: argparse.Namespace) -> int:
    from gitspaces.service import WorkspaceService

    service = WorkspaceService(args.data_dir)
    if args.remove:
        orphans = asyncio.run(service.remove_orphans())
        for path in orphans:
            print(f"removed {path}")
    else:
        orphans = asyncio.run(service.find_orphans())
        for path in orphans:
            print(path)
    if not orphans:
        print("No orphaned workspaces.")
    return 0


def main(argv: list[str] | None = None) -> int:
    from gitspaces import config

    parser = argparse.ArgumentParser(
        prog="gitspaces",
        description="gitspaces workspace manager helpers.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the gitspaces version and exit.",
    )
    parser.add_argument(
        "--data-dir",
        default=config.DATA_DIR,
        help="Root directory for mirrors and workspaces (default: %(default)s).",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser(
        "doctor",
        help="Check that git is usable and the data dir is writable.",
    )

    paths_parser = subparsers.add_parser(
        "paths",
        help="Print the on-disk paths for a repository and optional task.",
    )
    paths_parser.add_argument("repo", help="Repository as owner/repo.")
    paths_parser.add_argument("--task", help="Task id.")
    paths_parser.add_argument("--tenant", help="Tenant id (multi-tenant layout).")
    paths_parser.add_argument(
        "--bare",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Bare mirror layout (default from GITSPACES_BARE_MIRRORS).",
    )

    orphans_parser = subparsers.add_parser(
        "orphans",
        help="List workspace directories that no mirror has registered.",
    )
    orphans_parser.add_argument(
        "--remove",
        action="store_true",
        help="Delete the orphaned workspaces instead of listing them.",
    )

    if argv is None:
        argv = sys.argv[1:]

    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        # When used as a library function in tests, return the exit code
        # instead of raising. The __main__ guard still exits with this code
        # when the CLI is invoked from the shell.
        return int(getattr(exc, "code", 1) or 0)

    if args.version and not args.command:
        print(_load_project_version())
        return 0

    if args.command == "doctor":
        return _run_doctor(args.data_dir)
    if args.command == "paths":
        return _run_paths(args)
    if args.command == "orphans":
        config.configure_logging()
        return _run_orphans(args)

    # Default: show help if no command/flag was given.
    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
