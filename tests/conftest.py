from __future__ import annotations

import os
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest


@pytest.fixture
def anyio_backend():
    return "asyncio"


def git_result(stdout: str = "", stderr: str = "", exit_code: int = 0, timed_out: bool = False):
    return {"exit_code": exit_code, "timed_out": timed_out, "stdout": stdout, "stderr": stderr}


class FakeGit:
    """Stand-in for ``gitspaces.shell._run_git`` that records every call.

    ``handler(args, cwd)`` may return a result dict (or an awaitable of one);
    returning None means "succeeded with no output".
    """

    def __init__(self, handler: Optional[Callable[[List[str], Optional[str]], Any]] = None):
        self.handler = handler
        self.calls: List[Tuple[List[str], Optional[str]]] = []
        self.secrets: List[List[str]] = []

    async def __call__(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        env: Any = None,
        secrets: Sequence[str] = (),
        sanitize: bool = True,
    ) -> Dict[str, Any]:
        args = list(args)
        self.calls.append((args, cwd))
        self.secrets.append(list(secrets))
        res = self.handler(args, cwd) if self.handler else None
        if hasattr(res, "__await__"):
            res = await res
        return res or git_result()

    def commands(self) -> List[List[str]]:
        return [args for args, _cwd in self.calls]

    def count(self, *prefix: str) -> int:
        return sum(1 for args in self.commands() if _strip_config(args)[: len(prefix)] == list(prefix))


def _strip_config(args: List[str]) -> List[str]:
    out = list(args)
    while len(out) >= 2 and out[0] == "-c":
        out = out[2:]
    return out


@pytest.fixture
def isolated_git_env(monkeypatch, tmp_path):
    """Keep the developer's git config out of real-git tests."""

    global_config = tmp_path / "gitconfig"
    global_config.write_text("", encoding="utf-8")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE"):
        monkeypatch.delenv(name, raising=False)
    return os.environ
