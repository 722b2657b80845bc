# decide.py
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .model import Component, Decision, Overrides

log = logging.getLogger(__name__)

FALLBACK_REASON = "no previous successful build"


def count(items: Sequence[object], noun: str) -> str:
    return f"{len(items)} {noun}{'' if len(items) == 1 else 's'}"


def initial_decision(
    component: Component,
    *,
    base_build_id: Optional[str],
    matched_changes: Tuple[str, ...],
    overrides: Overrides,
) -> Decision:
    """
    Decide one component on its own, first matching rule wins:

      1. run_all                      -> include
      2. component force-excluded     -> exclude
      3. component force-included     -> include
      4. `only` set                   -> include iff it names this component
      5. no base build (fallback)     -> include
      6. otherwise                    -> include iff any matched changes
    """
    decision = Decision(
        component=component.name,
        base_build_id=base_build_id,
        matched_changes=tuple(matched_changes),
    )
    key = component.env_var_name

    if overrides.run_all:
        return replace(decision, included=True, reason="been forced to by PIPELINE_RUN_ALL")

    if key in overrides.force_exclude:
        return replace(decision, included=False, reason=f"been forced NOT to by PIPELINE_NO_RUN_{key}")

    if key in overrides.force_include:
        return replace(decision, included=True, reason=f"been forced to by PIPELINE_RUN_{key}")

    if overrides.only:
        return replace(
            decision,
            included=component.name == overrides.only,
            reason=f"PIPELINE_RUN_ONLY={overrides.only} was specified",
        )

    if base_build_id is None:
        return replace(decision, included=True, reason=FALLBACK_REASON)

    if matched_changes:
        return replace(
            decision,
            included=True,
            reason=f"{count(matched_changes, 'matching change')}: {', '.join(matched_changes)}",
        )

    # Only path that keeps the default "no matching changes" reason
    return replace(decision, included=False)


def initial_decisions(
    components: Sequence[Component],
    *,
    base_build_id: Optional[str],
    matches: Mapping[str, Tuple[str, ...]],
    overrides: Overrides,
) -> List[Decision]:
    return [
        initial_decision(
            c,
            base_build_id=base_build_id,
            matched_changes=matches.get(c.name, ()),
            overrides=overrides,
        )
        for c in components
    ]


def propagate_depends_on(
    components: Sequence[Component],
    decisions: Sequence[Decision],
) -> List[Decision]:
    """
    Include every depends_on target of an included component, transitively.

    `components` must be in topological order. Each sweep walks it backwards
    (dependents before their dependencies); sweeps repeat until nothing
    changes, so the result does not depend on edge order and re-running is
    a no-op.
    """
    by_name: Dict[str, Decision] = {d.component: d for d in decisions}

    changed = True
    while changed:
        changed = False
        for component in reversed(components):
            if not by_name[component.name].included:
                continue
            for dependency in component.depends_on:
                if by_name[dependency].included:
                    continue
                log.debug("%s pulled in by %s", dependency, component.name)
                by_name[dependency] = replace(
                    by_name[dependency],
                    included=True,
                    reason=f"been pulled in by a depends_on from {component.name}",
                )
                changed = True

    return [by_name[d.component] for d in decisions]
