# pipeline.py
from __future__ import annotations

import logging
import shlex
from typing import Any, Dict, List, Sequence

from .decide import count
from .model import Component, Decision, Outcome
from .settings import DEFAULT_ARTIFACT_COMMAND

log = logging.getLogger(__name__)


def artifact_steps(component: Component, decision: Decision, command_template: str) -> List[Dict[str, Any]]:
    """
    Steps that fetch an excluded component's artifacts from its base build.

    Uses the decision's base_build_id, which is the cache-hit build when the
    pure cache rewired it.
    """
    if decision.included or not decision.base_build_id or not component.produces:
        return []
    return [
        {
            "label": f":arrow_down: {component.name}: {artifact}",
            "command": command_template.format(
                build_id=shlex.quote(decision.base_build_id),
                artifact=shlex.quote(artifact),
            ),
        }
        for artifact in component.produces
    ]


def steps_for(
    component: Component,
    decision: Decision,
    artifact_command: str = DEFAULT_ARTIFACT_COMMAND,
) -> List[Any]:
    if decision.included:
        return list(component.steps)
    return artifact_steps(component, decision, artifact_command) + list(component.excluded_steps)


def env_for(component: Component, decision: Decision) -> Dict[str, str]:
    env = dict(component.env)
    if not decision.included:
        env.update(component.excluded_env)
    return env


def build_outcomes(
    components: Sequence[Component],
    decisions: Sequence[Decision],
    artifact_command: str = DEFAULT_ARTIFACT_COMMAND,
) -> List[Outcome]:
    """Pair components with their final decisions, in registry order."""
    by_name = {d.component: d for d in decisions}
    outcomes: List[Outcome] = []
    for component in components:
        decision = by_name[component.name]
        outcome = Outcome(
            component=component,
            decision=decision,
            steps=steps_for(component, decision, artifact_command),
            env=env_for(component, decision),
        )
        log.info(describe(outcome))
        outcomes.append(outcome)
    return outcomes


def describe(outcome: Outcome) -> str:
    """
    e.g. "foo will be EXCLUDED because it has no matching changes. 1 replacement step will be used instead."
    """
    name = outcome.component.name
    if outcome.included:
        return f"{name} will be INCLUDED because it has {outcome.reason}"

    message = f"{name} will be EXCLUDED because it has {outcome.reason}."
    if outcome.steps:
        message += f" {count(outcome.steps, 'replacement step')} will be used instead."
    return message


def merge_pipeline(outcomes: Sequence[Outcome]) -> Dict[str, Any]:
    """
    Concatenate steps in registry order and shallow-merge env maps
    (a later component's value wins on conflicting keys).
    """
    env: Dict[str, str] = {}
    steps: List[Any] = []
    for outcome in outcomes:
        env.update(outcome.env)
        steps.extend(outcome.steps)
    return {"env": env, "steps": steps}
