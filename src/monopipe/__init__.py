from .model import BaseBuild, BuildEnvironment, Component, Decision, Outcome, Overrides
from .pipeline import merge_pipeline
from .registry import load_all
from .runner import evaluate

__all__ = [
    "BaseBuild",
    "BuildEnvironment",
    "Component",
    "Decision",
    "Outcome",
    "Overrides",
    "evaluate",
    "load_all",
    "merge_pipeline",
]
