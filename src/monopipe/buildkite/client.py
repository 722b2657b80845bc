# buildkite/client.py
from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlencode, quote

from ..errors import PlatformApiError
from ..model import BaseBuild
from ..settings import DEFAULT_API_URL

log = logging.getLogger(__name__)

QueryValue = Union[str, int, Sequence[str]]


class BuildkiteClient:
    """HTTP client for the parts of the Buildkite REST API monopipe reads."""

    def __init__(
        self,
        organization: str,
        pipeline: str,
        token: str,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
    ):
        """
        Initialize API client.

        Args:
            organization: Buildkite organization slug
            pipeline: Buildkite pipeline slug
            token: API access token with read_builds scope
            base_url: Base URL of the API (e.g., "https://api.buildkite.com/v2")
            timeout: Seconds to wait for each request
        """
        # Ensure base_url doesn't end with /
        self.base_url = base_url.rstrip("/")
        self.organization = organization
        self.pipeline = pipeline
        self.token = token
        self.timeout = timeout

    def _request(self, path: str, query: Optional[Mapping[str, QueryValue]] = None) -> Any:
        """
        GET a path under the API and return the parsed JSON body.

        Raises:
            PlatformApiError: If the request fails or the body is not JSON
        """
        pairs: List[Tuple[str, str]] = []
        for key, value in (query or {}).items():
            if isinstance(value, (list, tuple)):
                pairs.extend((key, str(v)) for v in value)
            else:
                pairs.append((key, str(value)))

        url = f"{self.base_url}/{path.lstrip('/')}"
        if pairs:
            url = f"{url}?{urlencode(pairs)}"

        req = urllib.request.Request(
            url,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/json",
            },
            method="GET",
        )
        log.debug("GET %s", url)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise PlatformApiError(f"Buildkite API request failed: {e.code} {e.reason}. {error_body}".strip()) from e
        except urllib.error.URLError as e:
            raise PlatformApiError(f"Network error talking to Buildkite: {e.reason}") from e

        try:
            return json.loads(body) if body else None
        except json.JSONDecodeError as e:
            raise PlatformApiError(f"Invalid JSON response from Buildkite: {e}") from e

    def get_builds(self, branch: str, *, state: str = "passed", per_page: int = 50) -> List[BaseBuild]:
        """
        List builds of this pipeline for one branch, newest first.

        Args:
            branch: Branch to filter on
            state: Build state filter (e.g. "passed")
            per_page: Maximum number of builds to return (first page only)
        """
        path = (
            f"organizations/{quote(self.organization, safe='')}"
            f"/pipelines/{quote(self.pipeline, safe='')}/builds"
        )
        data = self._request(
            path,
            {"branch[]": [branch], "state": state, "per_page": per_page},
        )
        if not isinstance(data, list):
            raise PlatformApiError(f"Expected a list of builds from {path}, got {type(data).__name__}")

        builds: List[BaseBuild] = []
        for item in data:
            try:
                builds.append(BaseBuild.from_api(item))
            except (KeyError, TypeError) as e:
                raise PlatformApiError(f"Malformed build in Buildkite response: {e}") from e

        log.debug("Buildkite returned %d %s build(s) for branch %s", len(builds), state, branch)
        return builds
