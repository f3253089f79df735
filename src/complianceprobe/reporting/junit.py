from __future__ import annotations

from pathlib import Path

from junitparser import Error, Failure, JUnitXml, Skipped, TestCase, TestSuite

from complianceprobe.assertions.base import AssertionResult, Score
from complianceprobe.runner import PlaybookResult


def _case(result: AssertionResult, classname: str) -> TestCase:
    case = TestCase(f"{result.code}: {result.title}" if result.title else result.code)
    case.classname = classname
    case.time = float(result.duration_seconds or 0.0)
    if result.score is Score.FAIL:
        if result.error is not None:
            case.result = Error(result.error["message"], result.error["type"])
        else:
            case.result = Failure(result.message or "assertion failed")
    elif result.skipped:
        case.result = Skipped(result.message)
    return case


def write_junit(run_dir: Path, result: PlaybookResult) -> Path:
    """Write junit.xml with one suite per section, return path."""
    xml = JUnitXml(result.title)

    suites: dict[str, TestSuite] = {}
    for assertion_result in result.results:
        group = assertion_result.group or result.title
        suite = suites.get(group)
        if suite is None:
            suite = TestSuite(group)
            suite.add_property("state", result.state.value)
            if result.host is not None:
                suite.add_property("os", result.host.os)
                suite.add_property("arch", result.host.arch)
                suite.add_property("user", result.host.user)
            suites[group] = suite
        suite.add_testcase(_case(assertion_result, group))

    for suite in suites.values():
        # Set time after add_testcase (add_testcase resets it via update_statistics)
        suite.time = sum(float(case.time or 0.0) for case in suite)
        # Use append (not +=) to preserve properties and time
        xml.append(suite)

    junit_path = run_dir / "junit.xml"
    xml.write(str(junit_path), pretty=True)
    return junit_path
