# basebuild.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional

from .buildkite.client import BuildkiteClient
from .errors import GitCommandError, NoBaseBuildError, PlatformApiError
from .git_facts.git import Git
from .model import BaseBuild, BuildEnvironment

log = logging.getLogger(__name__)

DEFAULT_BRANCH_BUILDS = 50
INTEGRATION_BRANCH_BUILDS = 10
FIRST_PARENT_DEPTH = 100


class BaseBuildResolver:
    """
    Finds the prior successful build to diff against and pull artifacts from.

    Strategy is picked by branch identity:
      - default branch:     newest passed build whose commit is a first-parent
                            ancestor of (or equal to) the current commit
      - integration branch: newest passed build of that branch whose commit
                            still exists locally, else the default-branch strategy
      - feature branch:     default-branch strategy anchored at the merge-base
                            with origin/<default branch>
    """

    def __init__(self, git: Git, client: BuildkiteClient):
        self.git = git
        self.client = client

    def resolve(self, env: BuildEnvironment) -> BaseBuild:
        """
        Raises:
            NoBaseBuildError: no strategy produced a base build. Git and API
                failures are folded into this error.
        """
        try:
            if env.branch == env.default_branch:
                build = self.for_default_branch(env)
            elif env.integration_branch and env.branch == env.integration_branch:
                build = self.for_integration_branch(env)
            else:
                build = self.for_feature_branch(env)
        except (GitCommandError, PlatformApiError) as e:
            raise NoBaseBuildError(f"Could not resolve a base build for {env.branch}: {e}") from e

        log.info("Using base build %s (commit %s) %s", build.id, build.commit_sha, build.web_url)
        return build

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def for_default_branch(self, env: BuildEnvironment) -> BaseBuild:
        return self.at_or_before(env.commit, env.default_branch)

    def for_integration_branch(self, env: BuildEnvironment) -> BaseBuild:
        """
        Takes Buildkite's word for the branch's recent history, even if the
        chosen commit is topologically distant (the branch may have been reset).
        """
        branch = env.integration_branch or env.branch
        build = self.most_recent(branch)
        if build is not None:
            return build

        log.info(
            "No usable build of integration branch %s, falling back to %s",
            branch,
            env.default_branch,
        )
        return self.for_default_branch(env)

    def for_feature_branch(self, env: BuildEnvironment) -> BaseBuild:
        commit = self.git.merge_base(f"origin/{env.default_branch}", env.commit)
        log.debug("Found merge base %s for feature branch %s", commit, env.branch)

        try:
            return self.at_or_before(commit, env.default_branch)
        except (NoBaseBuildError, GitCommandError, PlatformApiError) as e:
            raise NoBaseBuildError(
                f"Failed to find a successful build of {env.default_branch} for merge base {commit} "
                f"of feature branch {env.branch} ({e}). Fallback mode will be used; try rebasing "
                f"your branch onto {env.default_branch}."
            ) from e

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def at_or_before(self, commit: str, branch: str) -> BaseBuild:
        """
        Newest passed, unblocked build of `branch` whose commit is `commit` or
        one of its first-parent ancestors.

        Intersects the build commits with the git history, ordered by git
        (nearest ancestor first).
        """
        # Independent I/O: query the API and git concurrently, join both
        with ThreadPoolExecutor(max_workers=2) as pool:
            builds_f = pool.submit(
                self.client.get_builds, branch, state="passed", per_page=DEFAULT_BRANCH_BUILDS
            )
            commits_f = pool.submit(
                self.git.rev_list, "--first-parent", "-n", str(FIRST_PARENT_DEPTH), commit
            )
            builds = builds_f.result()
            history = commits_f.result()

        # Builds arrive newest first; keep the newest build per commit
        by_commit: Dict[str, BaseBuild] = {}
        for build in builds:
            if not build.blocked:
                by_commit.setdefault(build.commit_sha, build)

        for sha in history:
            if sha in by_commit:
                log.debug("Found %s as latest successful build of %s from %s or earlier", sha, branch, commit)
                return by_commit[sha]

        raise NoBaseBuildError(
            f"Could not find any matching successful builds of {branch} at or before {commit}"
        )

    def most_recent(self, branch: str) -> Optional[BaseBuild]:
        """Newest passed, unblocked build of `branch` whose commit exists locally."""
        builds = self.client.get_builds(branch, state="passed", per_page=INTEGRATION_BRANCH_BUILDS)
        for build in builds:
            if build.blocked:
                continue
            if self.git.commit_exists(build.commit_sha):
                return build
            log.debug("Build %s has commit %s which is not in this clone", build.id, build.commit_sha)
        return None
