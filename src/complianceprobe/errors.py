"""Error kinds raised by the assertion engine."""

from __future__ import annotations

from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from complianceprobe.executor import ExecutionResult


class ComplianceProbeError(Exception):
    """Base class for all complianceprobe errors."""


class HostDetectionError(ComplianceProbeError):
    """OS or architecture of the host could not be determined. Fatal for a run."""


class PlaybookError(ComplianceProbeError):
    """A playbook file is invalid (duplicate codes, bad references, ...)."""


class RunCancelled(ComplianceProbeError):
    """The run was cancelled while a command was in flight."""


class AssertionExecutionError(ComplianceProbeError):
    """Non-fatal error scoped to a single assertion."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class ScriptGenerationError(AssertionExecutionError):
    pass


class ExecutionError(AssertionExecutionError):
    """The command could not be launched (not found, permission denied)."""


class ExecutionTimeoutError(AssertionExecutionError):
    """The command exceeded its timeout and was killed."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        result: ExecutionResult | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.result = result


class EvaluationError(AssertionExecutionError):
    pass


class GatherError(AssertionExecutionError):
    def __init__(
        self,
        message: str,
        code: str | None = None,
        key: str | None = None,
        gathered: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.key = key
        self.gathered = dict(gathered or {})


def describe_error(exc: BaseException) -> dict[str, Any]:
    """Structured description attached to assertion and playbook results."""
    description: dict[str, Any] = {
        "type": type(exc).__name__,
        "message": str(exc),
    }
    key = getattr(exc, "key", None)
    if key is not None:
        description["key"] = key
    return description
