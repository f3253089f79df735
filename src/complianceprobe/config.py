from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from complianceprobe.assertions.base import (
    Assertion,
    AssertionGroup,
    Evaluator,
    Gatherer,
    Playbook,
    Score,
    ScriptGenerator,
)
from complianceprobe.assertions.builtin import (
    ContainsEvaluator,
    RegexEvaluator,
    RegexGatherer,
    StaticScript,
    TemplateScript,
    as_evaluator,
    as_gatherer,
    as_script_generator,
    resolve_reference,
)
from complianceprobe.errors import PlaybookError
from complianceprobe.runner import ContinuationPolicy

ScoreName = Literal["pass", "neutral", "fail"]

_SCORES: dict[str, Score] = {
    "pass": Score.PASS,
    "neutral": Score.NEUTRAL,
    "fail": Score.FAIL,
}


def _exactly_one(model: BaseModel, fields: tuple[str, ...]) -> None:
    present = [name for name in fields if getattr(model, name) is not None]
    if len(present) != 1:
        options = ", ".join(f"'{f}'" for f in fields)
        raise ValueError(f"exactly one of {options} must be set, got {present or 'none'}")


class ScriptSpec(BaseModel):
    """A command: verbatim ``script``, a ``template`` or a Python ``func``."""

    model_config = ConfigDict(extra="forbid")
    script: str | None = None
    template: str | None = None
    func: str | None = None

    @model_validator(mode="after")
    def one_source(self) -> ScriptSpec:
        _exactly_one(self, ("script", "template", "func"))
        return self


class EvaluatorSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")
    regex: str | None = None
    contains: str | None = None
    func: str | None = None
    include_stderr: bool = False
    on_match: ScoreName = "pass"
    on_miss: ScoreName = "fail"

    @field_validator("on_match", "on_miss", mode="before")
    @classmethod
    def normalize_score(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            try:
                return Score(v).name.lower()
            except ValueError:
                return v
        if isinstance(v, str):
            return v.lower()
        return v

    @model_validator(mode="after")
    def one_rule(self) -> EvaluatorSpec:
        _exactly_one(self, ("regex", "contains", "func"))
        return self


class GatherSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")
    key: str
    regex: str | None = None
    func: str | None = None
    include_stderr: bool = False

    @field_validator("key")
    @classmethod
    def key_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("gather key must not be empty")
        return v

    @model_validator(mode="after")
    def one_source(self) -> GatherSpec:
        _exactly_one(self, ("regex", "func"))
        return self


def _normalize_scripts(v: Any) -> Any:
    if isinstance(v, (str, dict)):
        v = [v]
    result = []
    for item in v or []:
        if isinstance(item, str):
            result.append(ScriptSpec(script=item))
        else:
            result.append(item)
    return result


class AssertionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    code: str
    title: str = ""
    description: str = ""
    script: ScriptSpec
    pre: list[ScriptSpec] = []
    post: list[ScriptSpec] = []
    evaluate: list[EvaluatorSpec] = []
    gather: list[GatherSpec] = []
    timeout: float | None = None
    shell: str | None = None
    pass_description: str = ""
    fail_description: str = ""

    @field_validator("script", mode="before")
    @classmethod
    def normalize_script(cls, v: Any) -> Any:
        if isinstance(v, str):
            return ScriptSpec(script=v)
        return v

    @field_validator("pre", "post", mode="before")
    @classmethod
    def normalize_hooks(cls, v: Any) -> Any:
        return _normalize_scripts(v)

    @field_validator("timeout")
    @classmethod
    def timeout_positive(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("timeout must be positive")
        return v


class SectionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    title: str
    description: list[str] = []
    isolated: bool = True
    assertions: list[AssertionConfig]

    @field_validator("description", mode="before")
    @classmethod
    def normalize_description(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("assertions")
    @classmethod
    def assertions_must_not_be_empty(cls, v: list[AssertionConfig]) -> list[AssertionConfig]:
        if not v:
            raise ValueError("assertions must not be empty")
        return v


class RunSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    timeout: float = 60
    shell: str | None = None
    continue_on_error: bool = True
    continue_on_fail: bool = True

    @field_validator("timeout")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    def policy(self) -> ContinuationPolicy:
        return ContinuationPolicy(
            continue_on_error=self.continue_on_error,
            continue_on_fail=self.continue_on_fail,
        )


class PlaybookConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    title: str
    settings: RunSettings = RunSettings()
    sections: list[SectionConfig]

    @model_validator(mode="after")
    def sections_must_not_be_empty(self) -> PlaybookConfig:
        if not self.sections:
            raise ValueError("sections must not be empty")
        return self


def validate_playbook(config: PlaybookConfig) -> None:
    """Check that every assertion has a unique, non-empty code."""
    codes: set[str] = set()
    for section in config.sections:
        for assertion in section.assertions:
            if not assertion.code.strip():
                raise PlaybookError(
                    f"Assertion '{assertion.title}' in section '{section.title}' is missing a 'code'"
                )
            if assertion.code in codes:
                raise PlaybookError(f"Duplicate code found: {assertion.code}")
            codes.add(assertion.code)


def load_config(path: Path) -> PlaybookConfig:
    """Load and validate a playbook from a YAML file."""
    with open(path) as f:
        raw = yaml.safe_load(f)
    if not isinstance(raw, dict):
        raise PlaybookError(f"{path}: expected a mapping at the top level")

    config = PlaybookConfig(**raw)
    validate_playbook(config)
    return config


def _build_script(spec: ScriptSpec) -> ScriptGenerator:
    if spec.script is not None:
        return StaticScript(spec.script)
    if spec.template is not None:
        return TemplateScript(spec.template)
    return as_script_generator(resolve_reference(spec.func))


def _build_evaluator(spec: EvaluatorSpec) -> Evaluator:
    on_match = _SCORES[spec.on_match]
    on_miss = _SCORES[spec.on_miss]
    if spec.regex is not None:
        return RegexEvaluator(spec.regex, spec.include_stderr, on_match, on_miss)
    if spec.contains is not None:
        return ContainsEvaluator(spec.contains, spec.include_stderr, on_match, on_miss)
    return as_evaluator(resolve_reference(spec.func))


def _build_gatherer(spec: GatherSpec) -> Gatherer:
    if spec.regex is not None:
        return RegexGatherer(spec.key, spec.regex, spec.include_stderr)
    return as_gatherer(resolve_reference(spec.func), spec.key)


def build_assertion(config: AssertionConfig) -> Assertion:
    return Assertion(
        code=config.code,
        generator=_build_script(config.script),
        evaluators=[_build_evaluator(e) for e in config.evaluate],
        gatherers=[_build_gatherer(g) for g in config.gather],
        title=config.title,
        description=config.description,
        pre=[_build_script(s) for s in config.pre],
        post=[_build_script(s) for s in config.post],
        pass_description=config.pass_description,
        fail_description=config.fail_description,
        timeout=config.timeout,
        shell=config.shell,
    )


def build_playbook(config: PlaybookConfig) -> Playbook:
    """Turn a validated config into engine objects, resolving ``func`` references."""
    groups: list[Assertion | AssertionGroup] = []
    for section in config.sections:
        groups.append(
            AssertionGroup(
                title=section.title,
                description=list(section.description),
                isolated=section.isolated,
                items=[build_assertion(a) for a in section.assertions],
            )
        )
    return Playbook(title=config.title, items=groups)
