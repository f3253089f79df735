"""Tests for JSON Schema and schema doc generation."""

import json

from complianceprobe.schema import (
    generate_json_schema,
    generate_schema_doc,
    write_json_schema,
    write_schema_doc,
)


def test_schema_describes_playbook_top_level():
    schema = generate_json_schema()
    assert set(schema["required"]) == {"title", "sections"}
    assert {"title", "settings", "sections"} <= set(schema["properties"])


def test_defs_follow_their_dependencies():
    defs = list(generate_json_schema()["$defs"])
    for dep, user in [
        ("ScriptSpec", "AssertionConfig"),
        ("EvaluatorSpec", "AssertionConfig"),
        ("GatherSpec", "AssertionConfig"),
        ("AssertionConfig", "SectionConfig"),
    ]:
        assert defs.index(dep) < defs.index(user)


def test_assertion_shell_is_in_schema():
    assertion = generate_json_schema()["$defs"]["AssertionConfig"]
    assert "shell" in assertion["properties"]


def test_doc_lists_keys_with_defaults():
    doc = generate_schema_doc()
    assert "## Assertion" in doc
    assert "| `code` | required |" in doc
    assert "| `timeout` | `60` |" in doc
    assert "| `on_miss` | `\"fail\"` |" in doc
    assert "| `isolated` | `true` |" in doc


def test_doc_explains_dollar_escaping():
    doc = generate_schema_doc()
    assert "$$" in doc
    assert "awk '{print \\$1}'" in doc


def test_writers_create_parent_directories(tmp_path):
    out = tmp_path / "schemas" / "playbook.schema.json"
    doc = tmp_path / "docs" / "schema.md"
    write_json_schema(out)
    write_schema_doc(doc)
    assert json.loads(out.read_text())["$defs"]
    assert doc.read_text().startswith("# complianceprobe Playbook Schema")
