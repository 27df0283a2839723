"""Git subprocess runner.

Every git invocation in gitspaces goes through ``_run_git`` so timeouts,
cancellation, commit identity, and credential redaction are handled in one
place.
"""

from __future__ import annotations

import asyncio
import os
import signal
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Sequence

from . import config
from .exceptions import GitCommandError, GitTimeoutError
from .redaction import mask_secrets, redact_args, redact_text, sanitize_tty_output

LOGGER = config.BASE_LOGGER.getChild("shell")

GIT_EXECUTABLE = os.environ.get("GITSPACES_GIT", "git")


def _git_env(extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    proc_env = {
        **os.environ,
        "GIT_AUTHOR_NAME": config.GIT_AUTHOR_NAME,
        "GIT_AUTHOR_EMAIL": config.GIT_AUTHOR_EMAIL,
        "GIT_COMMITTER_NAME": config.GIT_COMMITTER_NAME,
        "GIT_COMMITTER_EMAIL": config.GIT_COMMITTER_EMAIL,
        # Never block on a credential prompt.
        "GIT_TERMINAL_PROMPT": "0",
        "LC_ALL": "C",
    }
    if extra is not None:
        proc_env.update(extra)
    return proc_env


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Kill the whole process group so helpers (ssh, remote-https) die too."""

    if proc.returncode is not None:
        return
    if os.name != "nt":
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=3)
            return
        except asyncio.TimeoutError:
            pass
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
    else:
        try:
            proc.kill()
        except ProcessLookupError:
            return
    try:
        await asyncio.wait_for(proc.wait(), timeout=3)
    except asyncio.TimeoutError:
        LOGGER.warning("git process %s did not exit after kill", proc.pid)


async def _run_git(
    args: Sequence[str],
    *,
    cwd: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
    env: Optional[Mapping[str, str]] = None,
    secrets: Iterable[str] = (),
    sanitize: bool = True,
) -> Dict[str, Any]:
    """Run ``git <args>`` and return exit code plus redacted output.

    With ``sanitize=False`` stdout is returned byte-for-byte (decoded), with
    only the exact ``secrets`` masked. Use it for data such as diffs and
    NUL-separated path lists; stderr is always cleaned up.
    """

    secrets = [s for s in secrets if s]
    if timeout_seconds is None:
        timeout_seconds = config.LOCAL_TIMEOUT_SECONDS
    argv = [GIT_EXECUTABLE, *args]
    LOGGER.detailed("git %s (cwd=%s)", " ".join(redact_args(args, secrets)), cwd)

    start_new_session = os.name != "nt"
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=_git_env(env),
        start_new_session=start_new_session,
    )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            proc.communicate(), timeout=timeout_seconds
        )
        timed_out = False
    except asyncio.TimeoutError:
        timed_out = True
        await _terminate(proc)
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=1)
        except (asyncio.TimeoutError, ValueError, OSError):
            stdout_bytes, stderr_bytes = b"", b""
    except asyncio.CancelledError:
        await _terminate(proc)
        raise

    stdout = stdout_bytes.decode("utf-8", errors="replace")
    if sanitize:
        stdout = redact_text(sanitize_tty_output(stdout), secrets)
    else:
        stdout = mask_secrets(stdout, secrets)
    stderr = redact_text(sanitize_tty_output(stderr_bytes.decode("utf-8", errors="replace")), secrets)

    return {
        "exit_code": proc.returncode,
        "timed_out": timed_out,
        "stdout": stdout,
        "stderr": stderr,
    }


def _clip(detail: str) -> str:
    limit = config.DIAGNOSTICS_MAX_CHARS
    if limit and limit > 0 and len(detail) > limit:
        return detail[:limit] + "…"
    return detail


def _shell_error(
    action: str,
    result: Mapping[str, Any],
    args: Sequence[str] = (),
    secrets: Iterable[str] = (),
) -> GitCommandError:
    """Create a consistent GitCommandError from a ``_run_git`` result."""

    exit_code = result.get("exit_code")
    timed_out = bool(result.get("timed_out", False))
    stderr = (result.get("stderr") or "").strip()
    stdout = (result.get("stdout") or "").strip()
    detail = _clip(redact_text(sanitize_tty_output(stderr or stdout), secrets).strip())
    cls = GitTimeoutError if timed_out else GitCommandError
    return cls(
        action,
        args=redact_args(args, secrets),
        exit_code=exit_code,
        timed_out=timed_out,
        diagnostics=detail,
    )


async def _run_git_ok(
    run_git: Callable[..., Awaitable[Dict[str, Any]]],
    action: str,
    args: Sequence[str],
    *,
    cwd: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
    env: Optional[Mapping[str, str]] = None,
    secrets: Iterable[str] = (),
    sanitize: bool = True,
) -> Dict[str, Any]:
    secrets = list(secrets)
    res = await run_git(
        args, cwd=cwd, timeout_seconds=timeout_seconds, env=env, secrets=secrets, sanitize=sanitize
    )
    if res.get("exit_code", 0) != 0 or res.get("timed_out"):
        raise _shell_error(action, res, args, secrets)
    return res


__all__ = ["GIT_EXECUTABLE", "_run_git", "_run_git_ok", "_shell_error"]
