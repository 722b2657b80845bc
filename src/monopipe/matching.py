# matching.py
from __future__ import annotations

import logging
import os
import re
import threading
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

from .model import Component

log = logging.getLogger(__name__)

MATCH_EVERYTHING = "**/*"

# Never enumerated for hashing, even with `matches: true`
EXCLUDED_DIRS = frozenset({".git"})


# ---------------------------------------------------------------------
# Glob semantics
# ---------------------------------------------------------------------
#   *      any run of characters within one path segment (dot-files included)
#   ?      one character within a segment
#   [...]  character class, [!...] negated
#   **/    zero or more whole directories
#   {a,b}  alternatives
#
# Patterns without a "/" are matched against the basename only, so "*.md"
# matches "docs/README.md".
# ---------------------------------------------------------------------

def _expand_braces(pattern: str) -> List[str]:
    start = pattern.find("{")
    if start == -1:
        return [pattern]

    depth = 0
    for end in range(start, len(pattern)):
        ch = pattern[end]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                break
    else:
        # unbalanced: treat literally
        return [pattern]

    body = pattern[start + 1:end]
    options: List[str] = []
    depth = 0
    current = ""
    for ch in body:
        if ch == "," and depth == 0:
            options.append(current)
            current = ""
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current += ch
    options.append(current)

    if len(options) < 2:
        return [pattern]

    prefix, suffix = pattern[:start], pattern[end + 1:]
    out: List[str] = []
    for opt in options:
        out.extend(_expand_braces(prefix + opt + suffix))
    return out


def _translate(pattern: str) -> str:
    i, n = 0, len(pattern)
    out: List[str] = []
    while i < n:
        ch = pattern[i]
        if ch == "*":
            if pattern.startswith("**", i):
                at_segment_start = i == 0 or pattern[i - 1] == "/"
                if at_segment_start and pattern.startswith("**/", i):
                    out.append("(?:.*/)?")
                    i += 3
                    continue
                # "**" inside a segment ("a**") is just "*"
                at_segment_end = i + 2 == n or pattern[i + 2] == "/"
                out.append(".*" if at_segment_start and at_segment_end else "[^/]*")
                i += 2
                continue
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "[":
            close = pattern.find("]", i + 2)
            if close == -1:
                out.append(re.escape(ch))
            else:
                body = pattern[i + 1:close].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = close + 1
                continue
        else:
            out.append(re.escape(ch))
        i += 1
    return "".join(out)


def _normalize(pattern: str) -> str:
    pattern = pattern.strip()
    while pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern.lstrip("/")


@lru_cache(maxsize=1024)
def compile_glob(pattern: str) -> Tuple[Pattern[str], bool]:
    """
    Compile a glob into (regex, match_base).

    match_base is True when the pattern has no "/" and should be applied to
    the basename of each path.
    """
    pattern = _normalize(pattern)
    alternatives = _expand_braces(pattern)
    regex = re.compile("(?s:" + "|".join(f"(?:{_translate(a)})" for a in alternatives) + r")\Z")
    return regex, "/" not in pattern


def glob_match(path: str, pattern: str) -> bool:
    regex, match_base = compile_glob(pattern)
    path = path.replace("\\", "/")
    if match_base:
        path = path.rsplit("/", 1)[-1]
    return regex.match(path) is not None


def _matches_any(path: str, patterns: Sequence[str]) -> bool:
    return any(glob_match(path, p) for p in patterns)


# ---------------------------------------------------------------------
# Component pattern sets
# ---------------------------------------------------------------------

def patterns_for_changes(component: Component) -> List[str]:
    """
    Patterns a changed file must match to count as a change to this component.

    Author patterns plus the descriptor itself, so editing the descriptor
    retriggers the component. `matches: false` never matches anything here.
    """
    if isinstance(component.matches, bool):
        return [MATCH_EVERYTHING] if component.matches else []
    return [*component.matches, component.descriptor_path]


def patterns_for_hash(component: Component) -> List[str]:
    """Patterns whose files feed the content hash; always include the descriptor."""
    patterns = patterns_for_changes(component)
    if component.descriptor_path not in patterns:
        patterns.append(component.descriptor_path)
    return patterns


def compute_matches(component: Component, changed_files: Iterable[str]) -> Tuple[str, ...]:
    """
    Subset of changed_files relevant to the component, sorted.

    No changed files means no matches, never "everything".
    """
    changed = list(changed_files or [])
    if not changed:
        return ()

    patterns = patterns_for_changes(component)
    if not patterns:
        return ()

    return tuple(sorted({f for f in changed if _matches_any(f, patterns)}))


# ---------------------------------------------------------------------
# File enumeration
# ---------------------------------------------------------------------

class FileIndex:
    """
    Lazily lists every regular file under a repository root, once.

    Safe to share between worker threads: the first caller walks the tree,
    later callers reuse the listing.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self._files: Optional[List[str]] = None
        self._lock = threading.Lock()

    def _walk(self) -> List[str]:
        found: List[str] = []
        # followlinks=False: symlinked directories are not descended into
        for dirpath, dirnames, filenames in os.walk(self.root, followlinks=False):
            dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
            base = Path(dirpath)
            for name in filenames:
                p = base / name
                if p.is_file():
                    found.append(p.relative_to(self.root).as_posix())
        found.sort()
        log.debug("Indexed %d file(s) under %s", len(found), self.root)
        return found

    def files(self) -> List[str]:
        with self._lock:
            if self._files is None:
                self._files = self._walk()
            return self._files

    def match(self, patterns: Sequence[str]) -> List[str]:
        """Deduplicated, sorted repo-relative paths matching any pattern."""
        if not patterns:
            return []
        return [f for f in self.files() if _matches_any(f, patterns)]


def matching_files(root: str | Path, patterns: Sequence[str]) -> List[str]:
    return FileIndex(root).match(patterns)
