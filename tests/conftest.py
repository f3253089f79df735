"""Pytest configuration and fixtures."""

from __future__ import annotations

import logging
import threading

import pytest

from complianceprobe.executor import ExecutionResult
from complianceprobe.host import HostContextProvider


@pytest.fixture(autouse=True)
def cleanup_loggers():
    """Clean up complianceprobe loggers after each test to prevent name collisions."""
    yield

    loggers_to_remove = [
        name
        for name in logging.Logger.manager.loggerDict.keys()
        if name.startswith("complianceprobe_")
    ]

    for name in loggers_to_remove:
        logger = logging.getLogger(name)
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
        del logging.Logger.manager.loggerDict[name]


class FakeExecutor:
    """Stands in for ProcessExecutor: records commands, replays canned results.

    ``outputs`` maps a command to an ExecutionResult, an exception to raise,
    or a callable ``(command) -> ExecutionResult``. Unknown commands echo the
    command text back on stdout with exit code 0.
    """

    def __init__(self, outputs=None):
        self.outputs = dict(outputs or {})
        self.commands: list[str] = []
        self.timeouts: list[float | None] = []
        self.shells: list[str | None] = []

    def execute(self, command, timeout, cancel_event: threading.Event | None = None, shell=None):
        self.commands.append(command)
        self.timeouts.append(timeout)
        self.shells.append(shell)
        outcome = self.outputs.get(command)
        if outcome is None:
            return ExecutionResult(stdout=command, stderr="", exit_code=0, duration_seconds=0.01)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(command)
        return outcome


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def linux_host():
    """Host provider pinned to a linux/amd64 machine."""
    return HostContextProvider(
        system="Linux",
        machine="x86_64",
        environ={"HOME": "/home/auditor", "PATH": "/usr/bin"},
        cwd="/srv/probe",
        user="auditor",
    )


def result(stdout="", stderr="", exit_code=0, timed_out=False):
    return ExecutionResult(
        stdout=stdout,
        stderr=stderr,
        exit_code=exit_code,
        duration_seconds=0.01,
        timed_out=timed_out,
    )
