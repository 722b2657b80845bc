from __future__ import annotations

import pytest

from monopipe.basebuild import BaseBuildResolver
from monopipe.conftest import FakeBuildkite, FakeGit, build
from monopipe.errors import NoBaseBuildError
from monopipe.model import BuildEnvironment

# first-parent history of main, newest first
MAIN = ["c5", "c4", "c3", "c2", "c1"]


def _env(branch="main", commit="c5", integration=None):
    return BuildEnvironment(
        branch=branch,
        commit=commit,
        default_branch="main",
        integration_branch=integration,
        pipeline="mono",
    )


def test_default_branch_picks_nearest_ancestor_with_a_passed_build():
    git = FakeGit(history={"c5": MAIN})
    # API order is newest first, but a build of c4 is nearer than c2 in git history
    client = FakeBuildkite({"main": [build("b-c2", "c2"), build("b-c4", "c4"), build("b-x", "unrelated")]})

    result = BaseBuildResolver(git, client).resolve(_env())

    assert result.id == "b-c4"
    assert client.calls == [("main", "passed", 50)]
    assert ("rev_list", ("--first-parent", "-n", "100", "c5")) in git.calls


def test_default_branch_can_use_a_build_of_the_current_commit():
    git = FakeGit(history={"c5": MAIN})
    client = FakeBuildkite({"main": [build("b-c5", "c5")]})
    assert BaseBuildResolver(git, client).resolve(_env()).id == "b-c5"


def test_default_branch_skips_blocked_builds():
    git = FakeGit(history={"c5": MAIN})
    client = FakeBuildkite({"main": [build("blocked", "c4", blocked=True), build("ok", "c3")]})
    assert BaseBuildResolver(git, client).resolve(_env()).id == "ok"


def test_default_branch_prefers_newest_build_of_the_same_commit():
    git = FakeGit(history={"c5": MAIN})
    client = FakeBuildkite({"main": [build("retry", "c4"), build("first", "c4")]})
    assert BaseBuildResolver(git, client).resolve(_env()).id == "retry"


def test_default_branch_without_intersection_fails():
    git = FakeGit(history={"c5": MAIN})
    client = FakeBuildkite({"main": [build("b", "elsewhere")]})
    with pytest.raises(NoBaseBuildError, match="Could not find any matching successful builds"):
        BaseBuildResolver(git, client).resolve(_env())


def test_api_failure_becomes_no_base_build():
    git = FakeGit(history={"c5": MAIN})
    client = FakeBuildkite(error="401 Unauthorized")
    with pytest.raises(NoBaseBuildError, match="401 Unauthorized"):
        BaseBuildResolver(git, client).resolve(_env())


def test_git_failure_becomes_no_base_build():
    git = FakeGit(history={})  # rev-list of c5 fails
    client = FakeBuildkite({"main": [build("b", "c4")]})
    with pytest.raises(NoBaseBuildError):
        BaseBuildResolver(git, client).resolve(_env())


def test_integration_branch_takes_most_recent_build_with_existing_commit():
    git = FakeGit(history={"c5": MAIN}, existing=["i2", "i1"])
    client = FakeBuildkite({
        "staging": [
            build("blocked", "i3", blocked=True),
            build("gone", "rewritten"),
            build("newest-ok", "i2"),
            build("older-ok", "i1"),
        ],
    })

    result = BaseBuildResolver(git, client).resolve(_env(branch="staging", commit="s9", integration="staging"))

    assert result.id == "newest-ok"
    assert client.calls == [("staging", "passed", 10)]


def test_integration_branch_falls_back_to_default_branch_strategy():
    git = FakeGit(history={"s9": ["s9", "c3", "c2"]}, existing=[])
    client = FakeBuildkite({
        "staging": [build("gone", "rewritten")],
        "main": [build("main-c3", "c3")],
    })

    result = BaseBuildResolver(git, client).resolve(_env(branch="staging", commit="s9", integration="staging"))

    assert result.id == "main-c3"
    assert [c[0] for c in client.calls] == ["staging", "main"]


def test_feature_branch_anchors_at_merge_base():
    git = FakeGit(
        history={"c3": ["c3", "c2", "c1"], "f2": ["f2", "f1", "c3", "c2", "c1"]},
        merge_bases={("origin/main", "f2"): "c3"},
    )
    # a build of c5 exists but is not an ancestor of the merge base
    client = FakeBuildkite({"main": [build("main-c5", "c5"), build("main-c2", "c2")]})

    result = BaseBuildResolver(git, client).resolve(_env(branch="feature/x", commit="f2"))

    assert result.id == "main-c2"
    assert ("merge_base", "origin/main", "f2") in git.calls
    assert ("rev_list", ("--first-parent", "-n", "100", "c3")) in git.calls


def test_feature_branch_failure_recommends_rebasing():
    git = FakeGit(history={"c3": ["c3"]}, merge_bases={("origin/main", "f2"): "c3"})
    client = FakeBuildkite({"main": []})

    with pytest.raises(NoBaseBuildError) as exc:
        BaseBuildResolver(git, client).resolve(_env(branch="feature/x", commit="f2"))

    assert "rebasing" in str(exc.value)
    assert "c3" in str(exc.value)


def test_feature_branch_without_merge_base_fails():
    git = FakeGit(history={})
    client = FakeBuildkite({"main": [build("b", "c1")]})
    with pytest.raises(NoBaseBuildError):
        BaseBuildResolver(git, client).resolve(_env(branch="feature/x", commit="f2"))


def test_integration_branch_unset_means_feature_strategy():
    git = FakeGit(history={"c1": ["c1"]}, merge_bases={("origin/main", "s1"): "c1"})
    client = FakeBuildkite({"main": [build("main-c1", "c1")]})

    result = BaseBuildResolver(git, client).resolve(_env(branch="staging", commit="s1", integration=None))

    assert result.id == "main-c1"
    assert client.calls == [("main", "passed", 50)]
