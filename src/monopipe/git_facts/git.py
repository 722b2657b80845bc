# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from ..errors import GitCommandError

log = logging.getLogger(__name__)


class Git:
    """
    Git accessor bound to one working directory.

    Every method raises GitCommandError when git exits non-zero (or cannot be
    started at all), so callers can decide whether a failure is fatal.
    """

    def __init__(self, cwd: str | Path | None = None):
        self.cwd = str(cwd) if cwd is not None else None

    def _git(self, args: list[str]) -> str:
        """
        Execute a git command and return its stdout as a clean string.

        This is the single low-level entry point for all Git operations in this
        class. Output is text (not bytes) with surrounding whitespace removed.
        """
        log.debug("git %s", " ".join(args))
        try:
            proc = subprocess.run(
                ["git", *args],
                cwd=self.cwd,
                text=True,
                capture_output=True,
                check=False,
            )
        except FileNotFoundError as e:
            # git itself is not installed / not on PATH
            raise GitCommandError(command=list(args), returncode=127, stderr=str(e)) from e

        if proc.returncode != 0:
            raise GitCommandError(command=list(args), returncode=proc.returncode, stderr=proc.stderr)

        # Strip trailing newlines so callers can do clean string comparisons
        return proc.stdout.strip()

    def repo_root(self) -> Path:
        """
        Return the absolute path to the root of the current Git repository.

        Uses git itself as the source of truth rather than guessing based on
        filesystem layout.
        """
        return Path(self._git(["rev-parse", "--show-toplevel"]))

    def rev_parse(self, ref: str) -> str:
        """
        Resolve a ref (branch, tag, abbreviated or full SHA) to a full commit SHA.

        `--verify` plus the `^{commit}` suffix makes git fail for refs that do
        not exist locally, which is how callers check that a commit from the CI
        platform is still present in this clone.
        """
        return self._git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"])

    def commit_exists(self, ref: str) -> bool:
        try:
            self.rev_parse(ref)
            return True
        except GitCommandError:
            return False

    def rev_list(self, *args: str) -> List[str]:
        """
        Return the commits printed by `git rev-list <args>`, in git's order.

        e.g. rev_list("--first-parent", "-n", "100", sha) lists up to 100
        first-parent ancestors of sha (sha included), newest first.
        """
        out = self._git(["rev-list", *args])
        if not out:
            return []
        return out.splitlines()

    def merge_base(self, ref_a: str, ref_b: str) -> str:
        """
        Return the merge-base (best common ancestor) of two refs.

        For a feature branch this is the point where it diverged from the
        default branch.
        """
        return self._git(["merge-base", ref_a, ref_b])

    def diff(self, base: str, head: str) -> List[str]:
        """
        Return the files changed between two commits, relative to the repo root.

        `--name-only` outputs only file paths, one per line. `--no-renames`
        makes a rename show up as both its old and new path, so components
        matching either side see the change.
        """
        out = self._git(["diff", "--name-only", "--no-renames", f"{base}..{head}"])

        # No output means no file-level changes
        if not out:
            return []

        # Deduplicated, stable order
        return sorted(set(out.splitlines()))

    def current_branch(self) -> Optional[str]:
        """Current branch name, or None when HEAD is detached."""
        name = self._git(["rev-parse", "--abbrev-ref", "HEAD"])
        return None if name == "HEAD" else name

    def head_sha(self) -> str:
        return self.rev_parse("HEAD")
