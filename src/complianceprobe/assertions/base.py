"""Base data structures and callback interfaces for the assertion system."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, TYPE_CHECKING

if TYPE_CHECKING:
    from complianceprobe.context import ScriptContext


class Score(Enum):
    """Tri-state verdict of an assertion."""

    FAIL = -1
    NEUTRAL = 0
    PASS = 1

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def coerce(cls, value: Any) -> Score:
        """Accept a Score or one of the ints -1, 0, 1."""
        if isinstance(value, Score):
            return value
        # bool is an int subclass; True/False are not valid verdicts
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                pass
        raise ValueError(f"Invalid score {value!r}: expected -1, 0 or 1")

    @classmethod
    def worst(cls, scores: Iterable[Score]) -> Score:
        """Most severe score; PASS for an empty iterable."""
        return max(scores, key=lambda s: s.severity, default=cls.PASS)

    def __str__(self) -> str:
        return self.name


_SEVERITY = {Score.PASS: 0, Score.NEUTRAL: 1, Score.FAIL: 2}


class ScriptGenerator(ABC):
    @abstractmethod
    def generate(self, context: ScriptContext) -> str:
        """Return the command (or script body) to execute on this host."""
        ...


class Evaluator(ABC):
    @abstractmethod
    def evaluate(
        self, stdout: str, stderr: str, assertion_context: Mapping[str, str]
    ) -> Score | int:
        """Score captured output as -1 (fail), 0 (neutral) or 1 (pass)."""
        ...


class Gatherer(ABC):
    """Extracts one value from command output, stored under ``key``."""

    key: str

    @abstractmethod
    def gather(
        self, stdout: str, stderr: str, assertion_context: Mapping[str, str]
    ) -> str:
        ...


@dataclass
class Assertion:
    """One check of a playbook.

    Attributes:
        code: Unique identifier within the playbook (e.g. "SSH_01").
        generator: Builds the command for the current host.
        evaluators: Scored in order, first non-neutral verdict wins.
        gatherers: Run in order after evaluation, write into the context.
        pre: Setup scripts run before the main command (output not scored).
        post: Teardown scripts run after gathering (output not scored).
        timeout: Per-assertion timeout in seconds, overrides the run default.
        shell: Shell for this assertion's scripts, overrides the run default.
    """

    code: str
    generator: ScriptGenerator
    evaluators: list[Evaluator] = field(default_factory=list)
    gatherers: list[Gatherer] = field(default_factory=list)
    title: str = ""
    description: str = ""
    pre: list[ScriptGenerator] = field(default_factory=list)
    post: list[ScriptGenerator] = field(default_factory=list)
    pass_description: str = ""
    fail_description: str = ""
    timeout: float | None = None
    shell: str | None = None


@dataclass
class AssertionGroup:
    """Assertions sharing a context scope, isolated from sibling groups."""

    title: str
    items: list[Assertion | AssertionGroup] = field(default_factory=list)
    description: list[str] = field(default_factory=list)
    isolated: bool = True


@dataclass
class Playbook:
    title: str
    items: list[Assertion | AssertionGroup] = field(default_factory=list)

    def iter_assertions(self) -> Iterator[Assertion]:
        yield from _walk(self.items)

    def iter_groups(self) -> Iterator[AssertionGroup]:
        yield from _walk_groups(self.items)


def _walk(items: Iterable[Assertion | AssertionGroup]) -> Iterator[Assertion]:
    for item in items:
        if isinstance(item, AssertionGroup):
            yield from _walk(item.items)
        else:
            yield item


def _walk_groups(items: Iterable[Assertion | AssertionGroup]) -> Iterator[AssertionGroup]:
    for item in items:
        if isinstance(item, AssertionGroup):
            yield item
            yield from _walk_groups(item.items)


@dataclass
class AssertionResult:
    """Result of running a single assertion.

    Attributes:
        code: Code of the assertion that produced this result.
        score: Final verdict, forced to FAIL by any error before gathering.
        gathered: Key/value pairs written by this assertion's gatherers.
        error: Structured description ``{"type", "message"}`` or None.
        skipped: True when the generator returned an empty command.
        group: Title of the enclosing group, if any.
    """

    code: str
    score: Score
    gathered: dict[str, str] = field(default_factory=dict)
    error: dict[str, Any] | None = None
    title: str = ""
    command: str = ""
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    duration_seconds: float = 0.0
    timed_out: bool = False
    skipped: bool = False
    group: str | None = None
    message: str = ""
    description: str = ""

    @property
    def passed(self) -> bool:
        return self.score is not Score.FAIL

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "title": self.title,
            "group": self.group,
            "score": self.score.value,
            "verdict": self.score.name,
            "passed": self.passed,
            "message": self.message,
            "description": self.description,
            "gathered": dict(self.gathered),
            "error": self.error,
            "command": self.command,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_code": self.exit_code,
            "duration_seconds": self.duration_seconds,
            "timed_out": self.timed_out,
            "skipped": self.skipped,
        }
