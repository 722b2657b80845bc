from __future__ import annotations

import shutil
import subprocess

import pytest

from monopipe.errors import GitCommandError
from monopipe.git_facts.git import Git

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _run(cwd, *args):
    return subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True).stdout.strip()


def _commit(cwd, path, content, message):
    target = cwd / path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)
    _run(cwd, "add", "-A")
    _run(cwd, "commit", "-q", "-m", message)
    return _run(cwd, "rev-parse", "HEAD")


@pytest.fixture
def git_repo(tmp_path, monkeypatch):
    for var, value in {
        "GIT_AUTHOR_NAME": "Test",
        "GIT_AUTHOR_EMAIL": "test@example.com",
        "GIT_COMMITTER_NAME": "Test",
        "GIT_COMMITTER_EMAIL": "test@example.com",
        "GIT_CONFIG_NOSYSTEM": "1",
    }.items():
        monkeypatch.setenv(var, value)
    _run(tmp_path, "init", "-q", "-b", "main")
    return tmp_path


def test_diff_and_rev_list(git_repo):
    c1 = _commit(git_repo, "a/one.py", "1", "one")
    c2 = _commit(git_repo, "b/two.py", "2", "two")
    c3 = _commit(git_repo, "a/one.py", "changed", "three")
    git = Git(git_repo)

    assert git.rev_list("--first-parent", "-n", "100", c3) == [c3, c2, c1]
    assert git.rev_list("--first-parent", "-n", "2", c3) == [c3, c2]
    assert git.diff(c1, c3) == ["a/one.py", "b/two.py"]
    assert git.diff(c3, c3) == []
    assert git.head_sha() == c3


def test_rename_reports_both_paths(git_repo):
    c1 = _commit(git_repo, "old/name.py", "content\n" * 20, "add")
    (git_repo / "new").mkdir()
    (git_repo / "old" / "name.py").rename(git_repo / "new" / "name.py")
    _run(git_repo, "add", "-A")
    _run(git_repo, "commit", "-q", "-m", "move")

    assert Git(git_repo).diff(c1, "HEAD") == ["new/name.py", "old/name.py"]


def test_merge_base_of_diverged_branches(git_repo):
    base = _commit(git_repo, "base.txt", "base", "base")
    _run(git_repo, "checkout", "-q", "-b", "feature")
    feature = _commit(git_repo, "feature.txt", "f", "feature")
    _run(git_repo, "checkout", "-q", "main")
    _commit(git_repo, "main.txt", "m", "main")
    git = Git(git_repo)

    assert git.merge_base("main", feature) == base
    assert git.current_branch() == "main"


def test_unknown_commit(git_repo):
    _commit(git_repo, "x", "x", "x")
    git = Git(git_repo)

    assert git.commit_exists("HEAD") is True
    assert git.commit_exists("0" * 40) is False
    with pytest.raises(GitCommandError) as exc:
        git.rev_list("--first-parent", "-n", "100", "0" * 40)
    assert exc.value.returncode != 0
    assert "rev-list" in str(exc.value)


def test_repo_root(git_repo):
    (git_repo / "sub").mkdir()
    assert Git(git_repo / "sub").repo_root().resolve() == git_repo.resolve()
