"""Console output formatting utilities for monopipe.

Everything goes to stderr: stdout is reserved for the generated pipeline.
"""

from __future__ import annotations

import sys
from typing import Optional, Sequence

from ..model import Component, Outcome


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where to write (defaults to sys.stderr at call time)
        """
        self.debug = debug
        self._stream = stream

    @property
    def stream(self):
        return self._stream if self._stream is not None else sys.stderr

    def _print(self, text: str = "") -> None:
        print(text, file=self.stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._print(f"\n{title}")
        self._print("-" * len(title))

    def print_evaluation_started(
        self,
        branch: str,
        commit: str,
        component_count: int,
    ) -> None:
        """Print evaluation start information."""
        self._print("\nPIPELINE SELECTION")
        self._print(f"Branch: {branch}")
        self._print(f"Commit: {commit}")
        self._print(f"Components: {component_count}")

    def print_plan(self, outcomes: Sequence[Outcome]) -> None:
        """Print the per-component decision table."""
        self.print_header("PLAN")
        for outcome in outcomes:
            name = outcome.component.name
            if outcome.included:
                self._print(f"  + {name} ({outcome.reason})")
            else:
                self._print(f"  - {name} (skipped: {outcome.reason})")

        included = sum(1 for o in outcomes if o.included)
        self._print(f"\n{included} of {len(outcomes)} component(s) included")

    def print_components(self, components: Sequence[Component]) -> None:
        """Print components in dependency order with their relationships."""
        self.print_header("COMPONENTS")
        for c in components:
            self._print(f"  {c.name}  [{c.descriptor_path}]")
            if c.produces:
                self._print(f"    produces:   {', '.join(c.produces)}")
            if c.expects:
                self._print(f"    expects:    {', '.join(c.expects)}")
            if c.depends_on:
                self._print(f"    depends_on: {', '.join(c.depends_on)}")
            if c.pure:
                self._print("    pure")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        self._print(f"\nERROR: {title}")
        self._print(message)
        if details:
            for detail in details:
                self._print(f"  {detail}")
        if suggestion:
            self._print(f"\n{suggestion}")

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=self.stream)
        else:
            self._print(f"Error: {exc}")

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._print(message)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
