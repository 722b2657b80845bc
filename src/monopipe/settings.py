# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import SettingsError
from .model import BuildEnvironment

DEFAULT_API_URL = "https://api.buildkite.com/v2"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_CACHE_PREFIX = "monopipe:cache"
DEFAULT_ARTIFACT_COMMAND = "buildkite-agent artifact download --build {build_id} {artifact} ."

_ENV_NAMES = {
    "branch": "BUILDKITE_BRANCH",
    "commit": "BUILDKITE_COMMIT",
    "organization": "BUILDKITE_ORGANIZATION_SLUG",
    "pipeline": "BUILDKITE_PIPELINE_SLUG",
    "api_token": "BUILDKITE_API_ACCESS_TOKEN",
    "build_id": "BUILDKITE_BUILD_ID",
}


@dataclass(frozen=True)
class Settings:
    branch: Optional[str]
    commit: Optional[str]
    default_branch: str
    integration_branch: Optional[str]
    organization: Optional[str]
    pipeline: Optional[str]
    api_token: Optional[str]
    build_id: Optional[str]
    api_url: str = DEFAULT_API_URL
    redis_url: str = DEFAULT_REDIS_URL
    cache_prefix: str = DEFAULT_CACHE_PREFIX
    artifact_command: str = DEFAULT_ARTIFACT_COMMAND
    max_workers: Optional[int] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ

        workers = env.get("MONOPIPE_MAX_WORKERS") or None
        if workers is not None:
            try:
                max_workers: Optional[int] = int(workers)
            except ValueError:
                raise SettingsError(f"MONOPIPE_MAX_WORKERS must be an integer, got {workers!r}")
        else:
            max_workers = None

        return cls(
            branch=env.get("BUILDKITE_BRANCH") or None,
            commit=env.get("BUILDKITE_COMMIT") or None,
            default_branch=env.get("BUILDKITE_PIPELINE_DEFAULT_BRANCH") or "main",
            integration_branch=env.get("MONOPIPE_INTEGRATION_BRANCH") or None,
            organization=env.get("BUILDKITE_ORGANIZATION_SLUG") or None,
            pipeline=env.get("BUILDKITE_PIPELINE_SLUG") or None,
            api_token=env.get("BUILDKITE_API_ACCESS_TOKEN") or None,
            build_id=env.get("BUILDKITE_BUILD_ID") or None,
            api_url=env.get("MONOPIPE_API_URL") or DEFAULT_API_URL,
            redis_url=env.get("MONOPIPE_REDIS_URL") or DEFAULT_REDIS_URL,
            cache_prefix=env.get("MONOPIPE_CACHE_PREFIX") or DEFAULT_CACHE_PREFIX,
            artifact_command=env.get("MONOPIPE_ARTIFACT_COMMAND") or DEFAULT_ARTIFACT_COMMAND,
            max_workers=max_workers,
        )

    def require(self, *names: str) -> None:
        """Raise SettingsError naming every listed attribute that is unset."""
        missing = [n for n in names if not getattr(self, n)]
        if missing:
            raise SettingsError(
                "Missing required environment variables: "
                + ", ".join(_ENV_NAMES.get(n, n) for n in missing)
            )

    def build_environment(self) -> BuildEnvironment:
        self.require("branch", "commit", "pipeline")
        return BuildEnvironment(
            branch=self.branch or "",
            commit=self.commit or "",
            default_branch=self.default_branch,
            integration_branch=self.integration_branch,
            pipeline=self.pipeline or "",
        )
