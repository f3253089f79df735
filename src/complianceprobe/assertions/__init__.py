"""Assertion system: data model, callback interfaces and built-in callbacks."""

from complianceprobe.assertions.base import (
    Assertion,
    AssertionGroup,
    AssertionResult,
    Evaluator,
    Gatherer,
    Playbook,
    Score,
    ScriptGenerator,
)

__all__ = [
    "Assertion",
    "AssertionGroup",
    "AssertionResult",
    "Evaluator",
    "Gatherer",
    "Playbook",
    "Score",
    "ScriptGenerator",
]
