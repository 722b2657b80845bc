# registry.py
from __future__ import annotations

import heapq
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import (
    ConfigError,
    CycleError,
    DuplicateComponentError,
    InvalidEnvironmentError,
    UnresolvedReferenceError,
)
from .model import Component

log = logging.getLogger(__name__)

DESCRIPTOR_DIR = ".buildkite"
DESCRIPTOR_GLOBS = ("pipeline.*.yml", "pipeline.*.yaml")


# ----------------------------------------------------------------------
# Descriptor schema
# ----------------------------------------------------------------------

def _strings(value: Any) -> List[str]:
    """None -> [], "x" -> ["x"], [..] -> [str, ..]"""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def _env(value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"expected a mapping, got {type(value).__name__}")
    return {str(k): "" if v is None else str(v) for k, v in value.items()}


class MonorepoSpec(BaseModel):
    """The `monorepo:` block of a pipeline.<name>.yml descriptor."""

    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    matches: Union[bool, List[str]] = False
    produces: List[str] = Field(default_factory=list)
    expects: List[str] = Field(default_factory=list)
    depends_on: List[str] = Field(default_factory=list)
    excluded_steps: List[Any] = Field(default_factory=list)
    excluded_env: Dict[str, str] = Field(default_factory=dict)
    pure: bool = False

    @field_validator("produces", "expects", "depends_on", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> List[str]:
        return _strings(value)

    @field_validator("matches", mode="before")
    @classmethod
    def _coerce_matches(cls, value: Any) -> Union[bool, List[str]]:
        if value is None:
            return False
        if isinstance(value, bool):
            return value
        return _strings(value)

    @field_validator("excluded_steps", mode="before")
    @classmethod
    def _coerce_steps(cls, value: Any) -> List[Any]:
        return [] if value is None else value

    @field_validator("excluded_env", mode="before")
    @classmethod
    def _coerce_env(cls, value: Any) -> Dict[str, str]:
        return _env(value)


# ----------------------------------------------------------------------
# Reading descriptors
# ----------------------------------------------------------------------

def name_from_filename(path: str | Path) -> Optional[str]:
    """pipeline.foo-bar.yml -> "foo-bar"; None if the name part is empty."""
    parts = Path(path).name.split(".")
    if len(parts) < 3 or parts[0] != "pipeline":
        return None
    return ".".join(parts[1:-1]) or None


def discover(root: str | Path) -> List[Path]:
    """Descriptor files under <root>/.buildkite, sorted by path."""
    base = Path(root) / DESCRIPTOR_DIR
    if not base.is_dir():
        return []
    found: Set[Path] = set()
    for pattern in DESCRIPTOR_GLOBS:
        found.update(p for p in base.glob(pattern) if p.is_file())
    return sorted(found)


def read_component(root: str | Path, path: str | Path) -> Component:
    """
    Parse and validate one descriptor.

    Raises:
      ConfigError: the file is unusable (caller should skip it)
      InvalidEnvironmentError: `env` is present but not a mapping (fatal)
    """
    root_p = Path(root).resolve()
    path_p = Path(path)
    if not path_p.is_absolute():
        path_p = root_p / path_p
    rel = path_p.resolve().relative_to(root_p).as_posix()

    try:
        text = path_p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(rel, f"could not read file: {e}") from e

    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(rel, f"invalid YAML: {e}") from e

    if not isinstance(doc, dict):
        raise ConfigError(rel, f"expected a mapping at the top level, got {type(doc).__name__}")

    env = doc.get("env")
    if env is not None and not isinstance(env, dict):
        # Fail noisily rather than silently dropping env vars from the merge
        raise InvalidEnvironmentError(path=rel, got=type(env).__name__)

    monorepo = doc.get("monorepo")
    if not isinstance(monorepo, dict):
        raise ConfigError(rel, "has no monorepo configuration")

    excluded_env = monorepo.get("excluded_env")
    if excluded_env is not None and not isinstance(excluded_env, dict):
        raise InvalidEnvironmentError(path=rel, got=type(excluded_env).__name__, key="monorepo.excluded_env")

    try:
        spec = MonorepoSpec.model_validate(monorepo)
    except ValidationError as e:
        raise ConfigError(rel, f"invalid monorepo configuration: {e}") from e

    if spec.model_extra:
        log.warning(
            "%s: unknown monorepo properties, continuing anyway: %s",
            rel,
            sorted(spec.model_extra),
        )

    name = spec.name or name_from_filename(rel)
    if not name:
        raise ConfigError(rel, "has no component name")

    steps = doc.get("steps") or []
    if not isinstance(steps, list):
        raise ConfigError(rel, f"steps must be a list, got {type(steps).__name__}")

    matches: Union[bool, Tuple[str, ...]] = (
        spec.matches if isinstance(spec.matches, bool) else tuple(spec.matches)
    )

    return Component(
        name=name,
        descriptor_path=rel,
        matches=matches,
        produces=tuple(spec.produces),
        expects=tuple(spec.expects),
        depends_on=tuple(spec.depends_on),
        steps=list(steps),
        excluded_steps=list(spec.excluded_steps),
        env=_env(env),
        excluded_env=dict(spec.excluded_env),
        pure=spec.pure,
    )


def read_all(root: str | Path) -> List[Component]:
    """
    Read every descriptor that can be read; skip (and log) the ones that can't.

    Raises DuplicateComponentError if two descriptors declare the same name.
    """
    components: List[Component] = []
    for path in discover(root):
        try:
            components.append(read_component(root, path))
        except ConfigError as e:
            log.warning("Skipping descriptor %s", e)

    seen: Dict[str, List[str]] = {}
    for c in components:
        seen.setdefault(c.name, []).append(c.descriptor_path)
    for name, paths in sorted(seen.items()):
        if len(paths) > 1:
            raise DuplicateComponentError(name=name, paths=paths)

    return components


# ----------------------------------------------------------------------
# Ordering
# ----------------------------------------------------------------------

def build_graph(components: Sequence[Component]) -> Dict[str, Set[str]]:
    """
    Edges name -> {names that must come after it}.

    The constraints on ordering are:
      - the producer of an expected artifact comes before the expecter
      - a depends_on target comes before the dependent
    """
    by_name = {c.name: c for c in components}
    producers: Dict[str, List[str]] = {}
    for c in components:
        for artifact in c.produces:
            producers.setdefault(artifact, []).append(c.name)

    adj: Dict[str, Set[str]] = {name: set() for name in by_name}

    for c in components:
        for expected in c.expects:
            found = producers.get(expected, [])
            if not found:
                raise UnresolvedReferenceError(
                    component=c.name,
                    kind="expects",
                    reference=expected,
                    message=f"could not find a component that produces {expected!r}",
                )
            if len(found) > 1:
                raise UnresolvedReferenceError(
                    component=c.name,
                    kind="expects",
                    reference=expected,
                    message=f"artifact {expected!r} is produced by more than one component: {sorted(found)}",
                )
            adj[found[0]].add(c.name)

        for dependency in c.depends_on:
            if dependency not in by_name:
                raise UnresolvedReferenceError(
                    component=c.name,
                    kind="depends_on",
                    reference=dependency,
                    message=f"could not find a component named {dependency!r} (pipeline.{dependency}.yml)",
                )
            adj[dependency].add(c.name)

    return adj


def _find_cycle_edge(adj: Dict[str, Set[str]], remaining: Set[str]) -> Tuple[str, str]:
    preds: Dict[str, Set[str]] = {n: set() for n in remaining}
    for before, afters in adj.items():
        if before not in remaining:
            continue
        for after in afters:
            if after in remaining:
                preds[after].add(before)

    # Walk backwards through remaining predecessors until a node repeats;
    # the edge that closes the loop lies on a cycle.
    node = min(remaining)
    seen = {node}
    while True:
        pred = min(preds[node])
        if pred in seen:
            return pred, node
        seen.add(pred)
        node = pred


def toposort(adj: Dict[str, Set[str]]) -> List[str]:
    """
    Kahn's algorithm with the lexicographically smallest ready name first.

    Deterministic for a given graph, independent of input/filesystem order.
    """
    indeg: Dict[str, int] = {n: 0 for n in adj}
    for afters in adj.values():
        for after in afters:
            indeg[after] += 1

    ready = [n for n, d in indeg.items() if d == 0]
    heapq.heapify(ready)
    order: List[str] = []

    while ready:
        node = heapq.heappop(ready)
        order.append(node)
        for child in adj[node]:
            indeg[child] -= 1
            if indeg[child] == 0:
                heapq.heappush(ready, child)

    if len(order) != len(indeg):
        remaining = {n for n, d in indeg.items() if d > 0}
        raise CycleError(edge=_find_cycle_edge(adj, remaining), remaining=sorted(remaining))

    return order


def sort_components(components: Sequence[Component]) -> List[Component]:
    """Producers and dependencies first; ties broken by name."""
    by_name = {c.name: c for c in components}
    order = toposort(build_graph(components))
    log.debug("Will apply components in order: [%s]", ", ".join(order))
    return [by_name[name] for name in order]


def load_all(root: str | Path) -> List[Component]:
    """Read all descriptors under root and return them in dependency order."""
    return sort_components(read_all(root))


def load_one(root: str | Path, name: str) -> Optional[Component]:
    """A single component by name (unsorted, no graph validation)."""
    for c in read_all(root):
        if c.name == name:
            return c
    return None
