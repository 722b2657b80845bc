# cache.py
from __future__ import annotations

import hashlib
import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import redis

from .errors import CacheUnavailableError
from .matching import FileIndex, patterns_for_hash
from .model import CacheKey, Component, Decision
from .settings import DEFAULT_CACHE_PREFIX

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Pure-component caching:
#   content_hash = sha256(
#       sorted [relative path, sha256(file contents)] for every file matching
#       the component's hash patterns (author globs + its own descriptor)
#   )
#
# Cache entry (redis string):
#   <prefix>:<pipeline>/<component>:<content_hash>  ->  build id
#
# A hit means an earlier build already built exactly these inputs, so this
# run can skip the component and pull its artifacts from that build instead.
# Entries are written after a successful build (see `record-success`).
# ---------------------------------------------------------------------

HASH_VERSION = 1  # bump this if you change hashing format


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


class FileHasher:
    """
    Hashes sets of repo-relative files.

    Per-file digests are memoized, so components sharing files only read
    them once. Safe to use from several threads.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self._digests: Dict[str, str] = {}
        self._lock = threading.Lock()

    def hash_file(self, rel: str) -> str:
        with self._lock:
            cached = self._digests.get(rel)
        if cached is not None:
            return cached

        digest = _hash_file_contents(self.root / rel)
        with self._lock:
            self._digests[rel] = digest
        return digest

    def hash_many(self, rel_paths: Iterable[str]) -> str:
        """
        Order-independent hash of paths + contents.

        Paths are part of the payload so a rename changes the hash.
        """
        files = sorted(set(rel_paths))
        payload = {
            "v": HASH_VERSION,
            "files": [[rel, self.hash_file(rel)] for rel in files],
        }
        return _sha256_str(_json_dumps_stable(payload))


def component_key(pipeline: str, name: str) -> str:
    """Cache namespace for a component; keeps unrelated pipelines apart in a shared store."""
    return f"{pipeline}/{name}"


def content_hash(component: Component, index: FileIndex, hasher: FileHasher) -> str:
    files = index.match(patterns_for_hash(component))
    log.debug("Hashing %d file(s) for %s", len(files), component.name)
    return hasher.hash_many(files)


class CacheStore:
    """
    Redis-backed map of (component key, content hash) -> build id.
    """

    def __init__(self, client: redis.Redis, prefix: str = DEFAULT_CACHE_PREFIX):
        self.client = client
        self.prefix = prefix.rstrip(":")

    @classmethod
    def from_url(cls, url: str, prefix: str = DEFAULT_CACHE_PREFIX) -> CacheStore:
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix=prefix)

    def _key(self, key: CacheKey) -> str:
        return f"{self.prefix}:{key.component}:{key.content_hash}"

    def get_all(self, keys: Sequence[CacheKey]) -> Dict[str, str]:
        """
        Batch lookup. Returns {component key: build id} for hits only.

        Raises:
            CacheUnavailableError: the store could not be queried
        """
        if not keys:
            return {}
        try:
            values = self.client.mget([self._key(k) for k in keys])
        except redis.exceptions.RedisError as e:
            raise CacheUnavailableError(f"Cache lookup failed: {e}") from e

        return {k.component: str(v) for k, v in zip(keys, values) if v is not None}

    def put(self, key: CacheKey, build_id: str) -> None:
        try:
            self.client.set(self._key(key), build_id)
        except redis.exceptions.RedisError as e:
            raise CacheUnavailableError(f"Cache write failed: {e}") from e


def _safe_hash(component: Component, index: FileIndex, hasher: FileHasher) -> Optional[str]:
    try:
        return content_hash(component, index, hasher)
    except OSError as e:
        log.warning("Could not hash files for %s, treating as a cache miss: %s", component.name, e)
        return None


def apply_pure_cache(
    components: Sequence[Component],
    decisions: Sequence[Decision],
    *,
    store: CacheStore,
    pipeline: str,
    index: FileIndex,
    hasher: Optional[FileHasher] = None,
    max_workers: Optional[int] = None,
) -> List[Decision]:
    """
    Short-circuit included pure components whose inputs were already built.

    Hit:  excluded, base_build_id rewired to the cached build.
    Miss: unchanged apart from a "(pure cache missed)" suffix on the reason.
    """
    by_name = {c.name: c for c in components}
    targets = [d for d in decisions if d.included and by_name[d.component].pure]
    if not targets:
        return list(decisions)

    hasher = hasher or FileHasher(index.root)

    # One hashing task per component; pool.map keeps results aligned with targets
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        hashes = list(pool.map(lambda d: _safe_hash(by_name[d.component], index, hasher), targets))

    keys: Dict[str, CacheKey] = {}
    for decision, digest in zip(targets, hashes):
        if digest is not None:
            keys[decision.component] = CacheKey(component_key(pipeline, decision.component), digest)

    try:
        hits = store.get_all(list(keys.values()))
    except CacheUnavailableError as e:
        log.warning("%s; treating every pure component as a cache miss", e)
        hits = {}

    target_names = {d.component for d in targets}
    out: List[Decision] = []
    for decision in decisions:
        if decision.component not in target_names:
            out.append(decision)
            continue

        key = keys.get(decision.component)
        build_id = hits.get(key.component) if key else None
        if build_id is None:
            out.append(replace(decision, reason=f"{decision.reason} (pure cache missed)"))
            continue

        log.debug("Pure cache hit for %s: build %s", decision.component, build_id)
        out.append(
            replace(
                decision,
                included=False,
                base_build_id=build_id,
                reason=f"already been built in build {build_id} (pure cache hit)",
            )
        )

    return out
