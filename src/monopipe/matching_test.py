from __future__ import annotations

import os

import pytest

from monopipe.conftest import write_file
from monopipe.matching import (
    FileIndex,
    compute_matches,
    glob_match,
    matching_files,
    patterns_for_changes,
    patterns_for_hash,
)
from monopipe.model import Component


def _component(matches, name="foo"):
    return Component(name=name, descriptor_path=f".buildkite/pipeline.{name}.yml", matches=matches)


@pytest.mark.parametrize(
    "path, pattern, expected",
    [
        ("foo/a.py", "foo/**", True),
        ("foo/deep/er/a.py", "foo/**", True),
        ("foobar/a.py", "foo/**", False),
        ("a.py", "**/*.py", True),
        ("x/y/a.py", "**/*.py", True),
        ("x/y/a.pyc", "**/*.py", False),
        ("docs/README.md", "*.md", True),          # basename matching
        ("docs/README.md", "docs/*.md", True),
        ("docs/sub/README.md", "docs/*.md", False),
        ("foo/.eslintrc", "foo/*", True),           # dot files included
        (".github/workflows/ci.yml", "**/*.yml", True),
        ("src/a.ts", "src/*.{ts,tsx}", True),
        ("src/a.tsx", "src/*.{ts,tsx}", True),
        ("src/a.js", "src/*.{ts,tsx}", False),
        ("a1.txt", "a?.txt", True),
        ("ab.txt", "a[0-9].txt", False),
        ("ab.txt", "a[!0-9].txt", True),
        ("foo/a.py", "./foo/**", True),
        ("src/ab/c.txt", "src/a**", False),     # in-segment ** stays in the segment
        ("src/ab.txt", "src/a**", True),
        ("src/ab/c.txt", "src/**", True),
    ],
)
def test_glob_match(path, pattern, expected):
    assert glob_match(path, pattern) is expected


def test_list_patterns_include_descriptor_for_changes_and_hash():
    c = _component(("foo/**",))
    assert patterns_for_changes(c) == ["foo/**", ".buildkite/pipeline.foo.yml"]
    assert patterns_for_hash(c) == ["foo/**", ".buildkite/pipeline.foo.yml"]


def test_boolean_patterns():
    everything = _component(True)
    nothing = _component(False)

    assert patterns_for_changes(everything) == ["**/*"]
    assert patterns_for_changes(nothing) == []
    # the descriptor always feeds the hash
    assert patterns_for_hash(nothing) == [".buildkite/pipeline.foo.yml"]
    assert ".buildkite/pipeline.foo.yml" in patterns_for_hash(everything)


def test_compute_matches_subset_sorted_and_deduplicated():
    c = _component(("foo/**", "*.md"))
    changed = ["bar/x.py", "foo/b.py", "foo/a.py", "docs/README.md", "foo/a.py"]
    assert compute_matches(c, changed) == ("docs/README.md", "foo/a.py", "foo/b.py")


def test_compute_matches_empty_changes_is_empty_even_when_matching_everything():
    assert compute_matches(_component(True), []) == ()


def test_matches_true_matches_any_change():
    assert compute_matches(_component(True), ["anything/at/all.txt"]) == ("anything/at/all.txt",)


def test_matches_false_never_matches():
    assert compute_matches(_component(False), [".buildkite/pipeline.foo.yml", "foo/a.py"]) == ()


def test_descriptor_edit_counts_as_change():
    c = _component(("foo/**",))
    assert compute_matches(c, [".buildkite/pipeline.foo.yml"]) == (".buildkite/pipeline.foo.yml",)


def test_file_index_lists_files_and_skips_git_dir(tmp_path):
    write_file(tmp_path, "foo/a.py")
    write_file(tmp_path, "foo/.hidden")
    write_file(tmp_path, ".git/HEAD", "ref: refs/heads/main")
    write_file(tmp_path, "bar/b.py")

    index = FileIndex(tmp_path)

    assert index.files() == ["bar/b.py", "foo/.hidden", "foo/a.py"]
    assert index.match(["foo/*"]) == ["foo/.hidden", "foo/a.py"]
    assert index.match(["**/*"]) == ["bar/b.py", "foo/.hidden", "foo/a.py"]
    assert index.match([]) == []


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
def test_file_index_does_not_follow_directory_symlinks(tmp_path):
    write_file(tmp_path, "real/a.txt")
    os.symlink(tmp_path / "real", tmp_path / "link", target_is_directory=True)

    assert matching_files(tmp_path, ["**/*.txt"]) == ["real/a.txt"]
