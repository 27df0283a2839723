import os

import pytest

from conftest import FakeGit, git_result
from gitspaces.exceptions import GitCommandError, MergeInProgressError, UsageError
from gitspaces.locks import LockTable
from gitspaces.mirror import MirrorStore
from gitspaces.models import ConflictReport
from gitspaces.provisioner import WorkspaceProvisioner
from gitspaces.publisher import ChangePublisher
from gitspaces.sync import SyncEngine


class Layout:
    def __init__(self, tmp_path):
        self.mirror = str(tmp_path / "repos" / "acme" / "widgets")
        self.ws = str(tmp_path / "worktrees" / "task-42")
        self.ws_git_dir = str(tmp_path / "wsgit")
        self.mirror_git_dir = os.path.join(self.mirror, ".git")
        for d in (self.ws, self.ws_git_dir, self.mirror_git_dir):
            os.makedirs(d)

    def git_dir_for(self, cwd):
        return self.mirror_git_dir if cwd == self.mirror else self.ws_git_dir

    def base(self, args, cwd):
        if args == ["rev-parse", "--absolute-git-dir"]:
            return git_result(stdout=self.git_dir_for(cwd) + "\n")
        if args == ["rev-parse", "--git-common-dir"]:
            return git_result(stdout=self.mirror_git_dir + "\n")
        if args == ["rev-parse", "--is-bare-repository"]:
            return git_result(stdout="false\n")
        if args[:3] == ["symbolic-ref", "--quiet", "refs/remotes/origin/HEAD"]:
            return git_result(stdout="refs/remotes/origin/main\n")
        if args == ["branch", "--show-current"]:
            return git_result(stdout="task-42\n")
        return None


def _publisher(tmp_path, handler):
    fake = FakeGit(handler)
    mirrors = MirrorStore(
        str(tmp_path / "data"), remote_base="https://git.example.test", bare=False,
        run_git=fake, locks=LockTable(),
    )
    provisioner = WorkspaceProvisioner(mirrors)
    return ChangePublisher(provisioner, SyncEngine(mirrors)), fake


@pytest.mark.anyio
async def test_commit_and_push_is_a_no_op_without_staged_changes(tmp_path):
    layout = Layout(tmp_path)

    def handler(args, cwd):
        if args == ["diff", "--cached", "--quiet"]:
            return git_result(exit_code=0)
        return layout.base(args, cwd)

    publisher, fake = _publisher(tmp_path, handler)

    assert await publisher.commit_and_push(layout.ws, "add feature") is False
    assert fake.count("commit") == 0
    assert fake.count("push") == 0


@pytest.mark.anyio
async def test_commit_and_push_commits_and_sets_upstream(tmp_path):
    layout = Layout(tmp_path)

    def handler(args, cwd):
        if args == ["diff", "--cached", "--quiet"]:
            return git_result(exit_code=1)
        return layout.base(args, cwd)

    publisher, fake = _publisher(tmp_path, handler)

    assert await publisher.commit_and_push(layout.ws, "add feature") is True
    cmds = fake.commands()
    assert cmds.index(["add", "-A"]) < cmds.index(["commit", "-m", "add feature"])
    assert cmds[-1] == ["push", "-u", "origin", "HEAD"]


@pytest.mark.anyio
async def test_commit_and_push_propagates_push_diagnostics(tmp_path):
    layout = Layout(tmp_path)

    def handler(args, cwd):
        if args == ["diff", "--cached", "--quiet"]:
            return git_result(exit_code=1)
        if "push" in args:
            return git_result(stderr="remote: Permission to acme/widgets.git denied", exit_code=128)
        return layout.base(args, cwd)

    publisher, _fake = _publisher(tmp_path, handler)

    with pytest.raises(GitCommandError) as excinfo:
        await publisher.commit_and_push(layout.ws, "add feature")
    assert "Permission" in excinfo.value.diagnostics


@pytest.mark.anyio
async def test_commit_and_push_rejects_empty_message_and_mid_merge(tmp_path):
    layout = Layout(tmp_path)
    publisher, fake = _publisher(tmp_path, layout.base)

    with pytest.raises(UsageError):
        await publisher.commit_and_push(layout.ws, "  ")
    assert fake.calls == []

    open(os.path.join(layout.ws_git_dir, "MERGE_HEAD"), "w").close()
    with pytest.raises(MergeInProgressError):
        await publisher.commit_and_push(layout.ws, "add feature")
    assert fake.count("add") == 0


@pytest.mark.anyio
async def test_commit_merge_resolution_requires_everything_resolved(tmp_path):
    layout = Layout(tmp_path)
    unmerged = {"files": "README.md\0"}

    def handler(args, cwd):
        if "--diff-filter=U" in args:
            return git_result(stdout=unmerged["files"])
        return layout.base(args, cwd)

    publisher, fake = _publisher(tmp_path, handler)

    with pytest.raises(UsageError):
        await publisher.commit_merge_resolution(layout.ws, "resolve")

    open(os.path.join(layout.ws_git_dir, "MERGE_HEAD"), "w").close()
    with pytest.raises(MergeInProgressError):
        await publisher.commit_merge_resolution(layout.ws, "resolve")
    assert fake.count("commit") == 0

    unmerged["files"] = ""
    await publisher.commit_merge_resolution(layout.ws, "resolve")
    assert ["commit", "--no-edit", "-m", "resolve"] in fake.commands()
    assert fake.commands()[-1] == ["push", "-u", "origin", "HEAD"]


@pytest.mark.anyio
async def test_merge_to_default_conflict_aborts_in_mirror_and_keeps_workspace(tmp_path):
    layout = Layout(tmp_path)

    def handler(args, cwd):
        if args == ["merge", "--no-edit", "task-42"]:
            assert cwd == layout.mirror
            open(os.path.join(layout.mirror_git_dir, "MERGE_HEAD"), "w").close()
            return git_result(stdout="CONFLICT (content): Merge conflict in README.md\n", exit_code=1)
        if "--diff-filter=U" in args:
            return git_result(stdout="README.md\0")
        if args == ["merge", "--abort"]:
            assert cwd == layout.mirror
            os.remove(os.path.join(layout.mirror_git_dir, "MERGE_HEAD"))
            return None
        return layout.base(args, cwd)

    publisher, fake = _publisher(tmp_path, handler)

    result = await publisher.merge_to_default(layout.mirror, layout.ws)

    assert result == ConflictReport(workspace_path=layout.mirror, conflicted_files=("README.md",))
    assert os.path.isdir(layout.ws)
    assert ["checkout", "main"] in fake.commands()
    assert ["merge", "--abort"] in fake.commands()
    assert fake.count("push") == 0
    assert fake.count("branch", "-D") == 0


@pytest.mark.anyio
async def test_merge_to_default_cleans_up_only_after_push(tmp_path):
    layout = Layout(tmp_path)

    def handler(args, cwd):
        if args[:2] == ["push", "origin"] and args[2].startswith("HEAD:"):
            return git_result(stderr="! [rejected] main -> main (fetch first)", exit_code=1)
        return layout.base(args, cwd)

    publisher, fake = _publisher(tmp_path, handler)

    with pytest.raises(GitCommandError):
        await publisher.merge_to_default(layout.mirror, layout.ws)

    assert os.path.isdir(layout.ws)
    assert fake.count("push", "origin", "--delete") == 0
    assert fake.count("branch", "-D") == 0


@pytest.mark.anyio
async def test_merge_to_default_lands_branch_and_tolerates_missing_remote_branch(tmp_path):
    layout = Layout(tmp_path)

    def handler(args, cwd):
        if args[:3] == ["push", "origin", "--delete"]:
            return git_result(stderr="error: unable to delete 'task-42': remote ref does not exist", exit_code=1)
        return layout.base(args, cwd)

    publisher, fake = _publisher(tmp_path, handler)

    assert await publisher.merge_to_default(layout.mirror, layout.ws) == "task-42"

    cmds = fake.commands()
    assert ["pull", "--no-rebase", "--no-edit", "origin", "main"] in cmds
    assert ["push", "origin", "HEAD:refs/heads/main"] in cmds
    assert not os.path.exists(layout.ws)
    assert ["branch", "-D", "task-42"] in cmds
    assert cmds.index(["push", "origin", "HEAD:refs/heads/main"]) < cmds.index(["branch", "-D", "task-42"])
