"""Compliance probe agent: ordered, host-aware checks scored Pass/Fail/Neutral."""

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
from complianceprobe.context import AssertionContext, ScriptContext
from complianceprobe.host import HostContextProvider, HostFacts
from complianceprobe.runner import (
    ContinuationPolicy,
    PlaybookResult,
    PlaybookRunner,
    RunState,
)

__all__ = [
    "Assertion",
    "AssertionContext",
    "AssertionGroup",
    "AssertionResult",
    "ContinuationPolicy",
    "Evaluator",
    "Gatherer",
    "HostContextProvider",
    "HostFacts",
    "Playbook",
    "PlaybookResult",
    "PlaybookRunner",
    "RunState",
    "Score",
    "ScriptContext",
    "ScriptGenerator",
]
