import logging
import os

import pytest

from conftest import FakeGit, git_result
from gitspaces.exceptions import GitCommandError, GitspacesError, UsageError
from gitspaces.locks import LockTable
from gitspaces.mirror import MirrorStore
from gitspaces.provisioner import WorkspaceProvisioner


def _provisioner(tmp_path, handler):
    fake = FakeGit(handler)
    mirrors = MirrorStore(
        str(tmp_path / "data"), remote_base="https://git.example.test", bare=True,
        run_git=fake, locks=LockTable(),
    )
    mirror = os.path.join(mirrors.data_dir, "repos", "acme", "widgets.git")
    os.makedirs(mirror)
    return WorkspaceProvisioner(mirrors), mirror, fake


def _default_main(args):
    if args[:3] == ["symbolic-ref", "--quiet", "refs/remotes/origin/HEAD"]:
        return git_result(stdout="refs/remotes/origin/main\n")
    return None


@pytest.mark.anyio
async def test_create_roots_new_branch_at_remote_default(tmp_path):
    def handler(args, cwd):
        if args[:2] == ["worktree", "add"]:
            os.makedirs(args[-2])
        return _default_main(args)

    prov, mirror, fake = _provisioner(tmp_path, handler)

    path = await prov.create(mirror, "t1", "42", "task-42")

    assert path == os.path.join(prov.data_dir, "workspaces", "t1", "worktrees", "widgets_42")
    assert ["worktree", "prune"] in fake.commands()
    assert ["worktree", "add", "--no-track", "-b", "task-42", path, "origin/main"] in fake.commands()


@pytest.mark.anyio
async def test_create_attaches_existing_branch_on_retry(tmp_path):
    def handler(args, cwd):
        if args[:5] == ["worktree", "add", "--no-track", "-b", "task-42"]:
            return git_result(stderr="fatal: a branch named 'task-42' already exists", exit_code=255)
        if args[:2] == ["worktree", "add"]:
            os.makedirs(args[2])
        return _default_main(args)

    prov, mirror, fake = _provisioner(tmp_path, handler)

    path = await prov.create(mirror, None, "42", "task-42")

    assert path == os.path.join(prov.data_dir, "worktrees", "task-42")
    assert fake.commands()[-1] == ["worktree", "add", path, "task-42"]
    assert os.path.isdir(path)


@pytest.mark.anyio
async def test_create_continues_a_branch_that_only_exists_on_origin(tmp_path):
    def handler(args, cwd):
        if args == ["rev-parse", "--verify", "--quiet", "refs/heads/task-42^{commit}"]:
            return git_result(exit_code=1)
        if args[:2] == ["worktree", "add"]:
            os.makedirs(args[-2])
        return _default_main(args)

    prov, mirror, fake = _provisioner(tmp_path, handler)

    path = await prov.create(mirror, "t1", "42", "task-42")

    assert ["worktree", "add", "--no-track", "-b", "task-42", path, "origin/task-42"] in fake.commands()


@pytest.mark.anyio
async def test_create_surfaces_other_worktree_failures(tmp_path):
    def handler(args, cwd):
        if args[:2] == ["worktree", "add"]:
            return git_result(stderr="fatal: invalid reference: origin/main", exit_code=128)
        return _default_main(args)

    prov, mirror, _fake = _provisioner(tmp_path, handler)

    with pytest.raises(GitCommandError) as excinfo:
        await prov.create(mirror, "t1", "42", "task-42")
    assert "invalid reference" in excinfo.value.diagnostics


@pytest.mark.anyio
async def test_create_is_idempotent_and_validates_before_running_git(tmp_path):
    prov, mirror, fake = _provisioner(tmp_path, lambda args, cwd: _default_main(args))
    existing = prov.workspace_path("widgets", "42", "t1")
    os.makedirs(existing)

    assert await prov.create(mirror, "t1", "42", "task-42") == existing
    assert fake.calls == []

    with pytest.raises(UsageError):
        await prov.create(mirror, "t1", "43", "bad branch")
    assert fake.calls == []

    with pytest.raises(UsageError):
        await prov.create(mirror, "t1", "43", "main")


@pytest.mark.anyio
async def test_destroy_removes_dir_prunes_and_is_idempotent(tmp_path, caplog):
    def handler(args, cwd):
        if args == ["worktree", "prune"]:
            return git_result(stderr="error: could not lock", exit_code=1)
        return None

    prov, mirror, fake = _provisioner(tmp_path, handler)
    path = prov.workspace_path("widgets", "42", "t1")
    os.makedirs(os.path.join(path, "src"))

    with caplog.at_level(logging.WARNING, logger="gitspaces"):
        await prov.destroy(path, mirror)

    assert not os.path.exists(path)
    assert (["worktree", "prune"], mirror) in fake.calls
    assert "prune failed" in caplog.text

    calls_before = len(fake.calls)
    await prov.destroy(path, mirror)
    assert len(fake.calls) == calls_before


@pytest.mark.anyio
async def test_current_branch_rejects_detached_head(tmp_path):
    prov, _mirror, _fake = _provisioner(tmp_path, lambda args, cwd: git_result(stdout="\n"))
    ws = tmp_path / "ws"
    ws.mkdir()

    with pytest.raises(GitspacesError):
        await prov.current_branch(str(ws))


@pytest.mark.anyio
async def test_mirror_for_reads_common_dir(tmp_path):
    def handler(args, cwd):
        if args == ["rev-parse", "--git-common-dir"]:
            return git_result(stdout=os.path.join(str(tmp_path), "repos", "acme", "widgets", ".git") + "\n")
        return None

    prov, _mirror, _fake = _provisioner(tmp_path, handler)
    ws = tmp_path / "ws"
    ws.mkdir()

    assert await prov.mirror_for(str(ws)) == os.path.join(str(tmp_path), "repos", "acme", "widgets")
    assert await prov.mirror_for(str(tmp_path / "missing")) is None
