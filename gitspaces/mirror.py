"""Shared mirrors: one local clone per repository identity."""

from __future__ import annotations

import glob
import os
import shutil
import tempfile
from typing import Optional

from . import config
from ._shared import _credential_secrets, _GitComponent, RunGit
from .locks import LockTable
from .models import RepositoryIdentity
from .paths import auth_config_args, mirror_path, remote_url, validate_identity

LOGGER = config.BASE_LOGGER.getChild("mirror")

# Keeps local task branches out of reach of fetch --prune in bare mirrors.
BARE_FETCH_REFSPEC = "+refs/heads/*:refs/remotes/origin/*"

DEFAULT_BRANCH_CANDIDATES = ("main", "master")
DEFAULT_BRANCH_FALLBACK = "main"


class MirrorStore(_GitComponent):
    """Ensures an up-to-date mirror exists for a repository identity.

    Clone and fetch for one identity are serialized through the mirror lock,
    so a second concurrent ``ensure`` waits and then refreshes the mirror the
    first one cloned instead of racing a second clone into the same path.
    """

    def __init__(
        self,
        data_dir: Optional[str] = None,
        *,
        remote_base: Optional[str] = None,
        bare: Optional[bool] = None,
        run_git: Optional[RunGit] = None,
        locks: Optional[LockTable] = None,
    ) -> None:
        super().__init__(run_git=run_git, locks=locks)
        self.data_dir = os.path.abspath(data_dir or config.DATA_DIR)
        self.remote_base = (remote_base or config.REMOTE_BASE).rstrip("/")
        self.bare = config.BARE_MIRRORS if bare is None else bool(bare)

    def mirror_path(self, identity: RepositoryIdentity) -> str:
        return mirror_path(self.data_dir, validate_identity(identity), bare=self.bare)

    def remote_url(self, identity: RepositoryIdentity) -> str:
        return remote_url(self.remote_base, validate_identity(identity))

    async def ensure(
        self,
        identity: RepositoryIdentity,
        credential: str = "",
        *,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        """Clone the mirror if missing, otherwise fetch with prune. Returns its path."""

        identity = validate_identity(identity)
        path = self.mirror_path(identity)
        timeout = self._network_timeout(timeout_seconds)

        async with self.locks.lock_for(path):
            if os.path.isdir(path) and await self._is_valid_mirror(path):
                LOGGER.info("Mirror for %s exists, fetching latest", identity.full_name)
                await self._refresh(identity, path, credential, timeout)
                return path
            if os.path.lexists(path):
                LOGGER.warning(
                    "Mirror at %s is incomplete or not a %s repository; re-cloning",
                    path,
                    "bare" if self.bare else "non-bare",
                )
                if os.path.isdir(path) and not os.path.islink(path):
                    shutil.rmtree(path)
                else:
                    os.remove(path)

            LOGGER.info("Cloning mirror for %s into %s", identity.full_name, path)
            await self._clone(identity, path, credential, timeout)
            LOGGER.info("Mirror ready at %s", path)
            return path

    async def _is_valid_mirror(self, path: str) -> bool:
        res = await self._git_raw(
            ["rev-parse", "--absolute-git-dir", "--is-bare-repository"], cwd=path
        )
        if res.get("exit_code") != 0:
            return False
        lines = (res.get("stdout", "") or "").strip().splitlines()
        if len(lines) != 2:
            return False
        git_dir, is_bare = lines[0].strip(), lines[1].strip() == "true"
        expected = path if self.bare else os.path.join(path, ".git")
        # A directory nested inside some other checkout would resolve to that
        # checkout's git dir.
        same_dir = os.path.realpath(git_dir) == os.path.realpath(expected)
        return same_dir and is_bare == self.bare

    def _remove_stale_clones(self, parent: str, leaf: str) -> None:
        for stale in glob.glob(os.path.join(parent, f".{glob.escape(leaf)}.clone-*")):
            LOGGER.warning("Removing leftover partial clone %s", stale)
            shutil.rmtree(stale, ignore_errors=True)

    async def _clone(
        self,
        identity: RepositoryIdentity,
        path: str,
        credential: str,
        timeout: float,
    ) -> None:
        parent, leaf = os.path.split(path)
        os.makedirs(parent, exist_ok=True)
        self._remove_stale_clones(parent, leaf)

        plain = self.remote_url(identity)
        if not credential:
            LOGGER.warning("No credential supplied, cloning %s without auth", identity.full_name)
        secrets = _credential_secrets(credential)

        # Clone next to the final path and move into place only on success, so
        # a killed or failed clone never leaves a half-populated mirror behind.
        tmpdir = tempfile.mkdtemp(prefix=f".{leaf}.clone-", dir=parent)
        try:
            args = [*auth_config_args(plain, credential), "clone"]
            if self.bare:
                args.append("--bare")
            args += ["--", plain, tmpdir]
            await self._git("git clone", args, cwd=parent, timeout_seconds=timeout, secrets=secrets)
            if self.bare:
                await self._configure_bare(tmpdir, plain, credential, timeout)
            os.rename(tmpdir, path)
        except BaseException:
            shutil.rmtree(tmpdir, ignore_errors=True)
            raise

    async def _configure_bare(self, path: str, plain: str, credential: str, timeout: float) -> None:
        """Give a bare clone remote-tracking refs and an ``origin/HEAD``."""

        await self._git(
            "Configure mirror fetch refspec",
            ["config", "remote.origin.fetch", BARE_FETCH_REFSPEC],
            cwd=path,
        )
        await self._git(
            "git fetch",
            [*auth_config_args(plain, credential), "fetch", "--prune", "origin"],
            cwd=path,
            timeout_seconds=timeout,
            secrets=_credential_secrets(credential),
        )
        head = await self._git_raw(["symbolic-ref", "--quiet", "--short", "HEAD"], cwd=path)
        head_branch = (head.get("stdout", "") or "").strip()
        if head.get("exit_code") == 0 and head_branch:
            if await self._ref_exists(path, f"refs/remotes/origin/{head_branch}"):
                await self._git(
                    "Set origin/HEAD",
                    ["symbolic-ref", "refs/remotes/origin/HEAD", f"refs/remotes/origin/{head_branch}"],
                    cwd=path,
                )

    async def _refresh(
        self,
        identity: RepositoryIdentity,
        path: str,
        credential: str,
        timeout: float,
    ) -> None:
        plain = self.remote_url(identity)
        # Scrub credentials an older layout may have stored in the remote URL.
        if await self._origin_url(path) != plain:
            await self._git("git remote set-url", ["remote", "set-url", "origin", plain], cwd=path)
        if self.bare:
            refspecs = await self._git_raw(["config", "--get-all", "remote.origin.fetch"], cwd=path)
            if BARE_FETCH_REFSPEC not in (refspecs.get("stdout", "") or ""):
                await self._git(
                    "Configure mirror fetch refspec",
                    ["config", "--add", "remote.origin.fetch", BARE_FETCH_REFSPEC],
                    cwd=path,
                )

        await self._git(
            "git fetch",
            [*auth_config_args(plain, credential), "fetch", "--all", "--prune"],
            cwd=path,
            timeout_seconds=timeout,
            secrets=_credential_secrets(credential),
        )

    async def default_branch(self, mirror_path: str) -> str:
        """Resolve the shared default branch.

        Order: the remote's symbolic HEAD, a local ``main``, a local ``master``,
        then the literal ``"main"``. Every caller that needs "the" default
        branch goes through here.
        """

        res = await self._git_raw(
            ["symbolic-ref", "--quiet", "refs/remotes/origin/HEAD"], cwd=mirror_path
        )
        ref = (res.get("stdout", "") or "").strip()
        prefix = "refs/remotes/origin/"
        if res.get("exit_code") == 0 and ref.startswith(prefix) and len(ref) > len(prefix):
            return ref[len(prefix):]

        for branch in DEFAULT_BRANCH_CANDIDATES:
            check = await self._git_raw(
                ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=mirror_path
            )
            if check.get("exit_code") == 0:
                return branch

        return DEFAULT_BRANCH_FALLBACK

    async def default_base_ref(self, repo_path: str, default_branch: str) -> str:
        """Freshest ref for the default branch: ``origin/<b>`` if present, else ``<b>``."""

        remote_ref = f"origin/{default_branch}"
        if await self._ref_exists(repo_path, f"refs/remotes/{remote_ref}"):
            return remote_ref
        return default_branch


__all__ = ["BARE_FETCH_REFSPEC", "MirrorStore"]
