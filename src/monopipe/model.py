# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class Component:
    """
    A named unit of the monorepo build, as declared by one descriptor file.

    `matches` is either a tuple of globs, or a bool:
      - True  -> every file in the repository is relevant
      - False -> never matched by content, only by explicit override
    """
    name: str
    descriptor_path: str                      # relative to repo root, e.g. ".buildkite/pipeline.foo.yml"
    matches: Union[Tuple[str, ...], bool] = False
    produces: Tuple[str, ...] = ()
    expects: Tuple[str, ...] = ()
    depends_on: Tuple[str, ...] = ()
    steps: List[Any] = field(default_factory=list)
    excluded_steps: List[Any] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    excluded_env: Dict[str, str] = field(default_factory=dict)
    pure: bool = False

    @property
    def env_var_name(self) -> str:
        """UPPER_SNAKE_CASE form of the name, as used by PIPELINE_RUN_<NAME> overrides."""
        return self.name.upper().replace("-", "_")


@dataclass(frozen=True)
class Decision:
    """
    Per-run verdict for one component.

    `included` is tri-state: None (not decided yet), True or False.
    Phases never mutate a Decision; they return new ones via dataclasses.replace.
    """
    component: str
    base_build_id: Optional[str] = None
    matched_changes: Tuple[str, ...] = ()
    included: Optional[bool] = None
    reason: str = "no matching changes"


@dataclass(frozen=True)
class BaseBuild:
    """A prior CI run, as returned by the Buildkite builds API."""
    id: str
    commit_sha: str
    web_url: str = ""
    blocked: bool = False

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> BaseBuild:
        return cls(
            id=str(data["id"]),
            commit_sha=str(data["commit"]),
            web_url=str(data.get("web_url") or ""),
            blocked=bool(data.get("blocked", False)),
        )


@dataclass(frozen=True)
class BuildEnvironment:
    """Branch identity of the build being evaluated."""
    branch: str
    commit: str
    default_branch: str = "main"
    integration_branch: Optional[str] = None
    pipeline: str = ""   # pipeline slug; namespaces cache keys


@dataclass(frozen=True)
class Overrides:
    """
    Manual decision overrides for one run.

    `force_include` and `force_exclude` hold component env-var names (see
    Component.env_var_name). `only` holds a plain component name.
    """
    run_all: bool = False
    force_include: frozenset[str] = frozenset()
    force_exclude: frozenset[str] = frozenset()
    only: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> Overrides:
        include: set[str] = set()
        exclude: set[str] = set()
        for key, value in environ.items():
            if not value:
                continue
            if key.startswith("PIPELINE_NO_RUN_"):
                exclude.add(key[len("PIPELINE_NO_RUN_"):])
            elif key.startswith("PIPELINE_RUN_") and key not in ("PIPELINE_RUN_ALL", "PIPELINE_RUN_ONLY"):
                include.add(key[len("PIPELINE_RUN_"):])

        return cls(
            run_all=bool(environ.get("PIPELINE_RUN_ALL")),
            force_include=frozenset(include),
            force_exclude=frozenset(exclude),
            only=environ.get("PIPELINE_RUN_ONLY") or None,
        )


@dataclass(frozen=True)
class CacheKey:
    """Lookup key into the pure-component cache."""
    component: str       # "<pipeline>/<component name>"
    content_hash: str


@dataclass(frozen=True)
class Outcome:
    """Final per-component result, in registry order, ready for merging."""
    component: Component
    decision: Decision
    steps: List[Any]
    env: Dict[str, str]

    @property
    def included(self) -> bool:
        return bool(self.decision.included)

    @property
    def reason(self) -> str:
        return self.decision.reason
