# conftest.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest
import redis
import yaml

from monopipe.errors import GitCommandError, PlatformApiError
from monopipe.model import BaseBuild


def write_descriptor(root: Path, name: str, doc: Any) -> Path:
    """Write .buildkite/pipeline.<name>.yml; dicts are dumped as YAML, strings written as-is."""
    path = root / ".buildkite" / f"pipeline.{name}.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    text = doc if isinstance(doc, str) else yaml.safe_dump(doc, sort_keys=False)
    path.write_text(text, encoding="utf-8")
    return path


def write_file(root: Path, rel: str, content: str = "") -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class FakeGit:
    """In-memory stand-in for monopipe.git_facts.git.Git."""

    def __init__(
        self,
        history: Optional[Dict[str, List[str]]] = None,
        existing: Sequence[str] = (),
        merge_bases: Optional[Dict[tuple, str]] = None,
        changed: Optional[List[str]] = None,
        diff_error: bool = False,
    ):
        self.history = history or {}
        self.existing = set(existing)
        self.merge_bases = merge_bases or {}
        self.changed = changed or []
        self.diff_error = diff_error
        self.calls: List[tuple] = []

    def rev_list(self, *args: str) -> List[str]:
        self.calls.append(("rev_list", args))
        commit = args[-1]
        n = int(args[args.index("-n") + 1]) if "-n" in args else None
        if commit not in self.history:
            raise GitCommandError(command=["rev-list", *args], returncode=128, stderr="bad revision")
        commits = self.history[commit]
        return commits[:n] if n is not None else list(commits)

    def commit_exists(self, ref: str) -> bool:
        self.calls.append(("commit_exists", ref))
        return ref in self.existing

    def merge_base(self, ref_a: str, ref_b: str) -> str:
        self.calls.append(("merge_base", ref_a, ref_b))
        try:
            return self.merge_bases[(ref_a, ref_b)]
        except KeyError:
            raise GitCommandError(command=["merge-base", ref_a, ref_b], returncode=1)

    def diff(self, base: str, head: str) -> List[str]:
        self.calls.append(("diff", base, head))
        if self.diff_error:
            raise GitCommandError(command=["diff", "--name-only", f"{base}..{head}"], returncode=128)
        return sorted(set(self.changed))


class FakeBuildkite:
    """In-memory stand-in for monopipe.buildkite.client.BuildkiteClient."""

    def __init__(self, builds: Optional[Dict[str, List[BaseBuild]]] = None, error: Optional[str] = None):
        self.builds = builds or {}
        self.error = error
        self.calls: List[tuple] = []

    def get_builds(self, branch: str, *, state: str = "passed", per_page: int = 50) -> List[BaseBuild]:
        self.calls.append((branch, state, per_page))
        if self.error:
            raise PlatformApiError(self.error)
        return list(self.builds.get(branch, []))[:per_page]


class FakeRedis:
    """Just enough of redis.Redis for CacheStore."""

    def __init__(self, data: Optional[Dict[str, str]] = None, down: bool = False):
        self.data = dict(data or {})
        self.down = down
        self.mget_calls: List[List[str]] = []

    def mget(self, keys: List[str]) -> List[Optional[str]]:
        self.mget_calls.append(list(keys))
        if self.down:
            raise redis.exceptions.ConnectionError("Connection refused")
        return [self.data.get(k) for k in keys]

    def set(self, key: str, value: str) -> bool:
        if self.down:
            raise redis.exceptions.ConnectionError("Connection refused")
        self.data[key] = value
        return True


def build(id: str, commit: str, blocked: bool = False) -> BaseBuild:
    return BaseBuild(id=id, commit_sha=commit, web_url=f"https://buildkite.com/acme/mono/builds/{id}", blocked=blocked)


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """An empty repository root."""
    (tmp_path / ".buildkite").mkdir()
    return tmp_path
