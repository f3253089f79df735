"""JSON, Markdown and metadata outputs of a playbook run."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, FileSystemLoader

from complianceprobe.runner import PlaybookResult

_STATUS = {"PASS": "✅ PASS", "FAIL": "❌ FAIL", "NEUTRAL": "➖ NEUTRAL"}


def write_json(run_dir: Path, result: PlaybookResult) -> Path:
    json_path = run_dir / "report.json"
    json_path.write_text(json.dumps(result.to_dict(), indent=2, default=str) + "\n")
    return json_path


def _sections(result: PlaybookResult) -> list[dict[str, Any]]:
    sections: dict[str, dict[str, Any]] = {}
    for r in result.results:
        title = r.group or result.title
        section = sections.setdefault(
            title,
            {
                "title": title,
                "description": result.section_descriptions.get(title, []),
                "assertions": [],
            },
        )
        section["assertions"].append(r)
    return list(sections.values())


def write_markdown(run_dir: Path, result: PlaybookResult) -> Path:
    """Render report.md from the Jinja2 template, return path."""
    tmpl_dir = Path(__file__).parent / "templates"
    env = Environment(
        loader=FileSystemLoader(str(tmpl_dir)),
        autoescape=False,
        keep_trailing_newline=True,
    )
    template = env.get_template("report.md.j2")

    finished = result.finished_at or datetime.now(timezone.utc).isoformat()
    markdown = template.render(
        result=result,
        sections=_sections(result),
        counts=result.counts(),
        status=_STATUS,
        date=finished[:10],
        generated_on=finished,
    )
    md_path = run_dir / "report.md"
    md_path.write_text(markdown, encoding="utf-8")
    return md_path


def write_meta(run_dir: Path, result: PlaybookResult, playbook_path: Path | None = None) -> Path:
    try:
        import importlib.metadata

        version = importlib.metadata.version("complianceprobe")
    except Exception:
        version = "unknown"

    meta: dict[str, Any] = {
        "run_id": run_dir.name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "title": result.title,
        "state": result.state.value,
        "verdict": result.score.name,
        "host": result.host.to_dict() if result.host else None,
        "complianceprobe_version": version,
    }
    if playbook_path is not None:
        meta["playbook"] = str(playbook_path)
    if result.halted_at is not None:
        meta["halted_at"] = result.halted_at

    meta_path = run_dir / "meta.yaml"
    meta_path.write_text(yaml.dump(meta, default_flow_style=False))
    return meta_path
