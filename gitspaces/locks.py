"""Per-mirror lock table.

Asyncio primitives are bound to the event loop that created them, so locks are
cached per loop (weakly, so locks for dead loops are collected) and then per
key. A key is a normalized mirror path, which maps 1:1 to a repository
identity.
"""

from __future__ import annotations

import asyncio
import os
import weakref
from typing import Dict


class LockTable:
    def __init__(self) -> None:
        self._loop_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = (
            weakref.WeakKeyDictionary()
        )

    @staticmethod
    def _key(path: str) -> str:
        return os.path.normcase(os.path.realpath(path))

    def lock_for(self, path: str) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        locks = self._loop_locks.get(loop)
        if locks is None:
            locks = {}
            self._loop_locks[loop] = locks
        key = self._key(path)
        lock = locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            locks[key] = lock
        return lock


# Shared by every component in the process unless a caller injects its own.
MIRROR_LOCKS = LockTable()

__all__ = ["LockTable", "MIRROR_LOCKS"]
