"""Report writers for playbook results."""

from __future__ import annotations

from pathlib import Path

from complianceprobe.reporting.junit import write_junit
from complianceprobe.reporting.summary import write_json, write_markdown, write_meta
from complianceprobe.runner import PlaybookResult


def write_reports(
    run_dir: Path, result: PlaybookResult, playbook_path: Path | None = None
) -> dict[str, Path]:
    """Write every report format into run_dir and return their paths."""
    run_dir.mkdir(parents=True, exist_ok=True)
    return {
        "junit": write_junit(run_dir, result),
        "json": write_json(run_dir, result),
        "markdown": write_markdown(run_dir, result),
        "meta": write_meta(run_dir, result, playbook_path),
    }


__all__ = ["write_json", "write_junit", "write_markdown", "write_meta", "write_reports"]
