# runner.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from .basebuild import BaseBuildResolver
from .cache import CacheStore, FileHasher, apply_pure_cache
from .decide import initial_decisions, propagate_depends_on
from .errors import GitCommandError, NoBaseBuildError, NoComponentsError
from .git_facts.git import Git
from .matching import FileIndex, compute_matches
from .model import BaseBuild, BuildEnvironment, Outcome, Overrides
from .pipeline import build_outcomes
from .registry import DESCRIPTOR_DIR, load_all
from .settings import DEFAULT_ARTIFACT_COMMAND

log = logging.getLogger(__name__)


def resolve_changes(
    git: Git,
    resolver: BaseBuildResolver,
    env: BuildEnvironment,
) -> Tuple[Optional[BaseBuild], List[str]]:
    """
    Returns:
      base_build:
        - the resolved base build
        - None in fallback mode (no usable history, or the diff failed)
      changed_files:
        - paths changed between the base build's commit and env.commit
    """
    try:
        base = resolver.resolve(env)
    except NoBaseBuildError as e:
        log.warning("No base build, entering fallback mode (everything will be included): %s", e)
        return None, []

    try:
        changed = git.diff(base.commit_sha, env.commit)
    except GitCommandError as e:
        log.warning("Could not diff against base build %s, entering fallback mode: %s", base.id, e)
        return None, []

    log.info("Found %d changed file(s) since %s", len(changed), base.commit_sha)
    return base, changed


def evaluate(
    repo_root: str | Path,
    env: BuildEnvironment,
    overrides: Overrides,
    *,
    git: Git,
    resolver: BaseBuildResolver,
    cache_store: Optional[CacheStore] = None,
    artifact_command: str = DEFAULT_ARTIFACT_COMMAND,
    max_workers: Optional[int] = None,
) -> List[Outcome]:
    """
    Decide, per component, whether it is built in this run.

    Phases run strictly one after another:
      load -> base build -> diff -> match -> decide -> depends_on -> pure cache

    Raises:
      FatalConfigError: the component graph is unusable (nothing is emitted)
    """
    root = Path(repo_root).resolve()

    components = load_all(root)
    if not components:
        raise NoComponentsError(f"No pipeline files found in {root / DESCRIPTOR_DIR}")

    base, changed = resolve_changes(git, resolver, env)

    matches = {c.name: compute_matches(c, changed) for c in components}
    for name, found in matches.items():
        if found:
            log.debug("%s matched %d changed file(s)", name, len(found))

    decisions = initial_decisions(
        components,
        base_build_id=base.id if base else None,
        matches=matches,
        overrides=overrides,
    )
    decisions = propagate_depends_on(components, decisions)

    if cache_store is not None:
        index = FileIndex(root)
        decisions = apply_pure_cache(
            components,
            decisions,
            store=cache_store,
            pipeline=env.pipeline,
            index=index,
            hasher=FileHasher(root),
            max_workers=max_workers,
        )

    return build_outcomes(components, decisions, artifact_command)
