"""Built-in script generators, evaluators and gatherers."""

from __future__ import annotations

import importlib
import re
from typing import Any, Callable, Mapping, TYPE_CHECKING

from expandvars import ExpandvarsException, expand

from complianceprobe.assertions.base import Evaluator, Gatherer, Score, ScriptGenerator
from complianceprobe.errors import PlaybookError, ScriptGenerationError

if TYPE_CHECKING:
    from complianceprobe.context import ScriptContext


def _select_input(stdout: str, stderr: str, include_stderr: bool) -> str:
    if include_stderr and not stdout:
        return stderr
    return stdout


class StaticScript(ScriptGenerator):
    """Returns the same command on every host."""

    def __init__(self, script: str) -> None:
        self.script = script

    def generate(self, context: ScriptContext) -> str:
        return self.script

    def __repr__(self) -> str:
        return f"StaticScript({self.script!r})"


class TemplateScript(ScriptGenerator):
    """Expands ``${name}`` / ``${name:-default}`` references in a script.

    Names resolve against, in increasing priority: the host environment,
    ``os``/``arch``/``user``/``cwd``, and the assertion context.

    Every unescaped ``$`` is expanded, not only ``${...}``: ``$$`` becomes
    the agent's PID and ``$1`` or ``$NF`` are unset names that fail
    generation. Shell and awk dollars must be written ``\\$``, e.g.
    ``awk '{print \\$1}' ${path}``.
    """

    def __init__(self, template: str) -> None:
        self.template = template

    def generate(self, context: ScriptContext) -> str:
        namespace: dict[str, str] = dict(context.env)
        namespace.update(
            os=context.os, arch=context.arch, user=context.user, cwd=context.cwd
        )
        namespace.update(context.assertion_context)
        try:
            return expand(self.template, nounset=True, environ=namespace)
        except ExpandvarsException as e:
            raise ScriptGenerationError(f"Cannot expand script template: {e}") from e

    def __repr__(self) -> str:
        return f"TemplateScript({self.template!r})"


class CallableScript(ScriptGenerator):
    def __init__(self, func: Callable[[ScriptContext], str]) -> None:
        self.func = func

    def generate(self, context: ScriptContext) -> str:
        result = self.func(context)
        if result is None:
            return ""
        if not isinstance(result, str):
            raise ScriptGenerationError(
                f"Script generator {self.func!r} returned {type(result).__name__}, expected str"
            )
        return result


class RegexEvaluator(Evaluator):
    """Scores ``on_match`` when the pattern is found in the output, else ``on_miss``.

    stdout is searched; with ``include_stderr`` stderr is used instead when
    stdout is empty.
    """

    def __init__(
        self,
        pattern: str,
        include_stderr: bool = False,
        on_match: Score = Score.PASS,
        on_miss: Score = Score.FAIL,
    ) -> None:
        try:
            self.regex = re.compile(pattern, re.MULTILINE)
        except re.error as e:
            raise PlaybookError(f"Invalid regex {pattern!r}: {e}") from e
        self.include_stderr = include_stderr
        self.on_match = on_match
        self.on_miss = on_miss

    def evaluate(
        self, stdout: str, stderr: str, assertion_context: Mapping[str, str]
    ) -> Score:
        text = _select_input(stdout, stderr, self.include_stderr)
        return self.on_match if self.regex.search(text) else self.on_miss


class ContainsEvaluator(Evaluator):
    def __init__(
        self,
        text: str,
        include_stderr: bool = False,
        on_match: Score = Score.PASS,
        on_miss: Score = Score.FAIL,
    ) -> None:
        self.text = text
        self.include_stderr = include_stderr
        self.on_match = on_match
        self.on_miss = on_miss

    def evaluate(
        self, stdout: str, stderr: str, assertion_context: Mapping[str, str]
    ) -> Score:
        haystack = _select_input(stdout, stderr, self.include_stderr)
        return self.on_match if self.text in haystack else self.on_miss


class CallableEvaluator(Evaluator):
    def __init__(self, func: Callable[[str, str, Mapping[str, str]], Any]) -> None:
        self.func = func

    def evaluate(
        self, stdout: str, stderr: str, assertion_context: Mapping[str, str]
    ) -> Score | int:
        return self.func(stdout, stderr, assertion_context)


class RegexGatherer(Gatherer):
    """Stores the first capture group of a match (whole match without groups, "" on miss)."""

    def __init__(self, key: str, pattern: str, include_stderr: bool = False) -> None:
        self.key = key
        try:
            self.regex = re.compile(pattern, re.MULTILINE)
        except re.error as e:
            raise PlaybookError(f"Invalid regex {pattern!r}: {e}") from e
        self.include_stderr = include_stderr

    def gather(
        self, stdout: str, stderr: str, assertion_context: Mapping[str, str]
    ) -> str:
        match = self.regex.search(_select_input(stdout, stderr, self.include_stderr))
        if match is None:
            return ""
        if match.re.groups >= 1:
            return match.group(1) or ""
        return match.group(0)


class CallableGatherer(Gatherer):
    def __init__(
        self, key: str, func: Callable[[str, str, Mapping[str, str]], Any]
    ) -> None:
        self.key = key
        self.func = func

    def gather(
        self, stdout: str, stderr: str, assertion_context: Mapping[str, str]
    ) -> str:
        value = self.func(stdout, stderr, assertion_context)
        return "" if value is None else str(value)


def resolve_reference(ref: str) -> Any:
    """Import ``"package.module:attr.path"`` and return the attribute."""
    module_name, sep, attr_path = ref.partition(":")
    if not sep or not module_name or not attr_path:
        raise PlaybookError(
            f"Invalid reference {ref!r}: expected 'package.module:attribute'"
        )
    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise PlaybookError(f"Cannot import module {module_name!r}: {e}") from e
    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise PlaybookError(f"{ref!r}: {module_name} has no attribute path {attr_path!r}") from e
    return obj


def _instantiate(obj: Any, base: type) -> Any:
    if isinstance(obj, type) and issubclass(obj, base):
        return obj()
    return obj


def as_script_generator(obj: Any) -> ScriptGenerator:
    obj = _instantiate(obj, ScriptGenerator)
    if isinstance(obj, ScriptGenerator):
        return obj
    if callable(obj):
        return CallableScript(obj)
    raise PlaybookError(f"{obj!r} is not a script generator")


def as_evaluator(obj: Any) -> Evaluator:
    obj = _instantiate(obj, Evaluator)
    if isinstance(obj, Evaluator):
        return obj
    if callable(obj):
        return CallableEvaluator(obj)
    raise PlaybookError(f"{obj!r} is not an evaluator")


def as_gatherer(obj: Any, key: str) -> Gatherer:
    if isinstance(obj, type) and issubclass(obj, Gatherer):
        obj = obj()
        obj.key = key
    if isinstance(obj, Gatherer):
        return obj
    if callable(obj):
        return CallableGatherer(key, obj)
    raise PlaybookError(f"{obj!r} is not a gatherer")
