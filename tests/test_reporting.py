from __future__ import annotations

import json
from types import MappingProxyType

import pytest
import yaml
from junitparser import Error, Failure, JUnitXml, Skipped

from complianceprobe.assertions.base import AssertionResult, Score
from complianceprobe.host import HostFacts
from complianceprobe.reporting import write_reports
from complianceprobe.reporting.junit import write_junit
from complianceprobe.reporting.summary import write_json, write_markdown, write_meta
from complianceprobe.runner import PlaybookResult, RunState


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_result() -> PlaybookResult:
    host = HostFacts(
        os="linux", arch="amd64", user="auditor", cwd="/srv", env=MappingProxyType({})
    )
    results = [
        AssertionResult(
            code="SYS_01",
            score=Score.PASS,
            title="Kernel version is reported",
            group="System information",
            command="uname -r",
            stdout="6.1.0",
            exit_code=0,
            duration_seconds=0.5,
            gathered={"kernel": "6.1"},
            message="Kernel release detected.",
            description="Reads the running kernel release.",
        ),
        AssertionResult(
            code="SYS_02",
            score=Score.FAIL,
            title="Kernel is not end-of-life",
            group="System information",
            command="echo kernel 6.1",
            stdout="kernel 6.1",
            exit_code=0,
            duration_seconds=1.25,
            message="Kernel too old.",
        ),
        AssertionResult(
            code="SSH_01",
            score=Score.FAIL,
            title="Root login disabled",
            group="SSH",
            command="sshd -T",
            exit_code=-9,
            duration_seconds=2.0,
            timed_out=True,
            error={"type": "ExecutionTimeoutError", "message": "Command timed out after 2s"},
            message="Command timed out after 2s",
        ),
        AssertionResult(
            code="WIN_01",
            score=Score.NEUTRAL,
            title="Windows only",
            group="SSH",
            skipped=True,
            message="Empty command, nothing executed",
        ),
    ]
    return PlaybookResult(
        title="Linux Baseline",
        state=RunState.COMPLETED,
        results=results,
        score=Score.FAIL,
        host=host,
        context={"kernel": "6.1"},
        section_descriptions={
            "System information": ["Facts gathered here are visible to later assertions."],
            "SSH": ["OpenSSH daemon hardening."],
        },
        started_at="2026-10-19T10:00:00+00:00",
        finished_at="2026-10-19T10:00:04+00:00",
    )


@pytest.fixture
def sample_run_dir(tmp_path, sample_result):
    run_dir = tmp_path / "run"
    run_dir.mkdir()
    write_reports(run_dir, sample_result, tmp_path / "linux-baseline.yaml")
    return run_dir


# ---------------------------------------------------------------------------
# write_junit tests
# ---------------------------------------------------------------------------


def test_write_reports_creates_every_file(sample_run_dir):
    for name in ("junit.xml", "report.json", "report.md", "meta.yaml"):
        assert (sample_run_dir / name).exists()


def test_write_junit_returns_path(tmp_path, sample_result):
    path = write_junit(tmp_path, sample_result)
    assert path == tmp_path / "junit.xml"


def test_junit_one_suite_per_section(sample_run_dir):
    xml = JUnitXml.fromfile(str(sample_run_dir / "junit.xml"))
    assert [s.name for s in xml] == ["System information", "SSH"]


def test_junit_testcase_names(sample_run_dir):
    xml = JUnitXml.fromfile(str(sample_run_dir / "junit.xml"))
    system = next(s for s in xml if s.name == "System information")
    assert [c.name for c in system] == [
        "SYS_01: Kernel version is reported",
        "SYS_02: Kernel is not end-of-life",
    ]
    for case in system:
        assert case.classname == "System information"


def test_junit_failure_recorded(sample_run_dir):
    xml = JUnitXml.fromfile(str(sample_run_dir / "junit.xml"))
    system = next(s for s in xml if s.name == "System information")
    assert system.failures == 1
    failing = next(c for c in system if c.name.startswith("SYS_02"))
    failure = next(r for r in failing.result if isinstance(r, Failure))
    assert failure.message == "Kernel too old."


def test_junit_error_and_skip_recorded(sample_run_dir):
    xml = JUnitXml.fromfile(str(sample_run_dir / "junit.xml"))
    ssh = next(s for s in xml if s.name == "SSH")
    assert ssh.errors == 1
    assert ssh.skipped == 1
    errored = next(c for c in ssh if c.name.startswith("SSH_01"))
    error = next(r for r in errored.result if isinstance(r, Error))
    assert error.type == "ExecutionTimeoutError"
    skipped = next(c for c in ssh if c.name.startswith("WIN_01"))
    assert any(isinstance(r, Skipped) for r in skipped.result)


def test_junit_suite_time(sample_run_dir):
    xml = JUnitXml.fromfile(str(sample_run_dir / "junit.xml"))
    system = next(s for s in xml if s.name == "System information")
    assert system.time == pytest.approx(1.75)


def test_junit_host_properties(sample_run_dir):
    xml = JUnitXml.fromfile(str(sample_run_dir / "junit.xml"))
    suite = next(iter(xml))
    props = {p.name: p.value for p in suite.properties()}
    assert props == {"state": "completed", "os": "linux", "arch": "amd64", "user": "auditor"}


def test_junit_ungrouped_results_use_playbook_title(tmp_path):
    result = PlaybookResult(
        title="Loose",
        state=RunState.COMPLETED,
        results=[AssertionResult(code="A", score=Score.PASS)],
        score=Score.PASS,
    )
    write_junit(tmp_path, result)
    xml = JUnitXml.fromfile(str(tmp_path / "junit.xml"))
    suite = next(iter(xml))
    assert suite.name == "Loose"
    assert [c.name for c in suite] == ["A"]


# ---------------------------------------------------------------------------
# JSON / Markdown / meta tests
# ---------------------------------------------------------------------------


def test_json_report_contents(sample_run_dir):
    data = json.loads((sample_run_dir / "report.json").read_text())
    assert data["title"] == "Linux Baseline"
    assert data["verdict"] == "FAIL"
    assert data["score"] == -1
    assert data["stats"] == {"fail": 2, "neutral": 1, "pass": 1}
    assert data["context"] == {"kernel": "6.1"}
    assert [a["code"] for a in data["assertions"]] == ["SYS_01", "SYS_02", "SSH_01", "WIN_01"]
    assert data["assertions"][2]["timed_out"] is True
    assert data["assertions"][3]["passed"] is True


def test_write_json_returns_path(tmp_path, sample_result):
    assert write_json(tmp_path, sample_result) == tmp_path / "report.json"


def test_markdown_report_sections_and_evidence(sample_run_dir):
    md = (sample_run_dir / "report.md").read_text(encoding="utf-8")
    assert md.startswith("---\ntitle: Linux Baseline\ndate: 2026-10-19\n")
    assert "## System information" in md
    assert "## SSH" in md
    assert "Facts gathered here are visible to later assertions." in md
    assert "OpenSSH daemon hardening." in md
    assert "Reads the running kernel release." in md
    assert "> uname -r" in md
    assert "6.1.0" in md
    assert "`kernel=6.1`" in md
    assert "**Pass:** Kernel release detected." in md
    assert "**Fail:** Kernel too old." in md
    assert "**ExecutionTimeoutError:** Command timed out after 2s" in md
    assert "(skipped)" in md
    assert "PASS: 1, FAIL: 2, NEUTRAL: 1" in md


def test_markdown_for_aborted_run(tmp_path):
    result = PlaybookResult(
        title="Aborted",
        state=RunState.ABORTED,
        score=Score.FAIL,
        error={"type": "HostDetectionError", "message": "Unsupported operating system"},
        finished_at="2026-10-19T00:00:00+00:00",
    )
    md = write_markdown(tmp_path, result).read_text(encoding="utf-8")
    assert "(aborted)" in md
    assert "PASS: 0, FAIL: 0, NEUTRAL: 0" in md


def test_meta_yaml(sample_run_dir):
    meta = yaml.safe_load((sample_run_dir / "meta.yaml").read_text())
    assert meta["run_id"] == "run"
    assert meta["title"] == "Linux Baseline"
    assert meta["state"] == "completed"
    assert meta["verdict"] == "FAIL"
    assert meta["host"]["os"] == "linux"
    assert meta["playbook"].endswith("linux-baseline.yaml")
    assert "halted_at" not in meta


def test_meta_records_halt(tmp_path):
    result = PlaybookResult(
        title="Halted", state=RunState.COMPLETED, score=Score.FAIL, halted_at="A_01"
    )
    meta = yaml.safe_load(write_meta(tmp_path, result).read_text())
    assert meta["halted_at"] == "A_01"
    assert meta["host"] is None
    assert "playbook" not in meta
