"""Generate JSON Schema and docs for the playbook YAML format."""

from __future__ import annotations

import json
from graphlib import TopologicalSorter
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel
from pydantic.fields import FieldInfo

from complianceprobe.config import (
    AssertionConfig,
    EvaluatorSpec,
    GatherSpec,
    PlaybookConfig,
    RunSettings,
    ScriptSpec,
    SectionConfig,
)

_DEFS_PREFIX = "#/$defs/"

_DOC_MODELS: list[tuple[str, type[BaseModel], str]] = [
    ("Playbook", PlaybookConfig, "Top level of a playbook file."),
    ("Settings", RunSettings, "Run-wide defaults under `settings:`. CLI options override them."),
    (
        "Section",
        SectionConfig,
        "A titled group of assertions. An isolated section keeps its gathered "
        "values to itself; `isolated: false` shares them with later sections.",
    ),
    (
        "Assertion",
        AssertionConfig,
        "One check. `shell` and `timeout` override the run settings for this "
        "assertion and its `pre`/`post` scripts.",
    ),
    (
        "Script",
        ScriptSpec,
        "`script`, `pre` and `post` take a plain string or a mapping with "
        "exactly one of these keys.",
    ),
    (
        "Evaluator",
        EvaluatorSpec,
        "Entries of `evaluate`, exactly one of `regex`, `contains`, `func`. "
        "They run in order and the first non-neutral verdict wins.",
    ),
    (
        "Gatherer",
        GatherSpec,
        "Entries of `gather`, exactly one of `regex`, `func`. A regex stores "
        "its first capture group, else the whole match, else an empty string.",
    ),
]

_TEMPLATE_NOTE = """\
## Templates

`template:` scripts expand `${name}` and `${name:-default}` from the host
environment, `os`, `arch`, `user`, `cwd` and values gathered earlier. Every
unescaped `$` is expanded: `$$` becomes the agent's PID and `$1` or `$NF`
are unset names that fail the assertion. Write dollars meant for the shell
or awk as `\\$`, e.g. `awk '{print \\$1}' ${path}`.

`func` values reference Python callables as `package.module:attribute`.
"""


def _refs(node: Any) -> Iterator[str]:
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str) and ref.startswith(_DEFS_PREFIX):
            yield ref[len(_DEFS_PREFIX):]
        for value in node.values():
            yield from _refs(value)
    elif isinstance(node, list):
        for value in node:
            yield from _refs(value)


def generate_json_schema() -> dict:
    """Schema of a playbook file; every ``$defs`` entry follows the ones it references."""
    schema = PlaybookConfig.model_json_schema()
    defs = schema.get("$defs")
    if defs:
        graph = {name: {ref for ref in _refs(body) if ref in defs} for name, body in defs.items()}
        schema["$defs"] = {name: defs[name] for name in TopologicalSorter(graph).static_order()}
    return schema


def write_json_schema(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(generate_json_schema(), indent=2) + "\n")


def _default(field: FieldInfo) -> str:
    if field.is_required():
        return "required"
    default = field.get_default(call_default_factory=True)
    if isinstance(default, BaseModel):
        return "see below"
    return f"`{json.dumps(default)}`"


def generate_schema_doc() -> str:
    lines = [
        "# complianceprobe Playbook Schema",
        "",
        "This doc is generated from the Pydantic models.",
    ]
    for title, model, summary in _DOC_MODELS:
        lines += ["", f"## {title}", "", summary, "", "| key | default |", "|---|---|"]
        for name, field in model.model_fields.items():
            lines.append(f"| `{name}` | {_default(field)} |")
    lines += ["", _TEMPLATE_NOTE]
    return "\n".join(lines)


def write_schema_doc(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(generate_schema_doc())
