# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class MonopipeError(Exception):
    """Base class for every error raised by monopipe."""


# ----------------------------------------------------------------------
# Descriptor / registry errors
# ----------------------------------------------------------------------

@dataclass
class ConfigError(MonopipeError):
    """
    A single descriptor could not be used.

    Non-fatal: the registry logs it and skips the file.
    """
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


class FatalConfigError(MonopipeError):
    """The component set as a whole is unusable; no pipeline can be emitted."""


@dataclass
class UnresolvedReferenceError(FatalConfigError):
    component: str
    kind: str  # "expects" | "depends_on"
    reference: str
    message: str = ""

    def __str__(self) -> str:
        msg = self.message or f"could not find a component for {self.kind} {self.reference!r}"
        return f"{self.component}: {msg}"


@dataclass
class CycleError(FatalConfigError):
    edge: tuple[str, str]
    remaining: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        before, after = self.edge
        return (
            f"Component graph has a cycle: {before!r} must come before {after!r}, "
            f"but {after!r} also (transitively) comes before {before!r}. "
            f"Stuck components: {self.remaining}"
        )


@dataclass
class DuplicateComponentError(FatalConfigError):
    name: str
    paths: list[str]

    def __str__(self) -> str:
        return f"Component name {self.name!r} is declared more than once: {self.paths}"


@dataclass
class InvalidEnvironmentError(FatalConfigError):
    path: str
    got: str
    key: str = "env"

    def __str__(self) -> str:
        return f"{self.path}: {self.key} must be a mapping of NAME: value, got {self.got}"


class NoComponentsError(FatalConfigError):
    """No descriptor could be loaded at all."""


# ----------------------------------------------------------------------
# Collaborator errors
# ----------------------------------------------------------------------

@dataclass
class GitCommandError(MonopipeError):
    command: list[str]
    returncode: int
    stderr: str = ""

    def __str__(self) -> str:
        cmd = " ".join(["git", *self.command])
        detail = f": {self.stderr.strip()}" if self.stderr.strip() else ""
        return f"`{cmd}` failed (exit={self.returncode}){detail}"


class PlatformApiError(MonopipeError):
    """Raised when the Buildkite REST API cannot be queried."""


class CacheUnavailableError(MonopipeError):
    """The cache store could not be reached; callers treat this as a miss."""


class NoBaseBuildError(MonopipeError):
    """No prior successful build could be used as a base; callers enter fallback mode."""


class SettingsError(MonopipeError):
    """A required setting is missing or malformed."""
