from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Sequence

from pydantic import BaseModel

from complianceprobe.assertions.base import (
    Assertion,
    AssertionGroup,
    AssertionResult,
    Playbook,
    Score,
    ScriptGenerator,
)
from complianceprobe.context import AssertionContext, ScriptContext, build_script_context
from complianceprobe.errors import (
    AssertionExecutionError,
    EvaluationError,
    ExecutionError,
    ExecutionTimeoutError,
    GatherError,
    HostDetectionError,
    RunCancelled,
    ScriptGenerationError,
    describe_error,
)
from complianceprobe.executor import ExecutionResult, ProcessExecutor
from complianceprobe.host import HostContextProvider, HostFacts
from complianceprobe.pipelines import EvaluationPipeline, GatherPipeline

ExecutorFactory = Callable[[HostFacts], ProcessExecutor]


class RunState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class ContinuationPolicy(BaseModel):
    """What the runner does after an assertion goes wrong.

    The default keeps going: errors and failures only degrade the assertion
    they happened in.
    """

    continue_on_error: bool = True
    continue_on_fail: bool = True


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PlaybookResult:
    title: str
    state: RunState
    results: list[AssertionResult] = field(default_factory=list)
    score: Score = Score.NEUTRAL
    host: HostFacts | None = None
    context: dict[str, str] = field(default_factory=dict)
    error: dict[str, Any] | None = None
    started_at: str = ""
    finished_at: str = ""
    halted_at: str | None = None
    section_descriptions: dict[str, list[str]] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.state is RunState.COMPLETED and self.score is not Score.FAIL

    def counts(self) -> dict[str, int]:
        counts = {score.name.lower(): 0 for score in Score}
        for result in self.results:
            counts[result.score.name.lower()] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "state": self.state.value,
            "score": self.score.value,
            "verdict": self.score.name,
            "host": self.host.to_dict() if self.host else None,
            "timestamps": {"start": self.started_at, "end": self.finished_at},
            "halted_at": self.halted_at,
            "error": self.error,
            "stats": self.counts(),
            "context": dict(self.context),
            "section_descriptions": {k: list(v) for k, v in self.section_descriptions.items()},
            "assertions": [r.to_dict() for r in self.results],
        }


class PlaybookRunner:
    """Runs the assertions of one playbook against one host, strictly in order.

    Each runner owns its context store and executor, so runners for
    different hosts can run in parallel threads without sharing state.
    A runner is single use.
    """

    def __init__(
        self,
        playbook: Playbook,
        host_provider: HostContextProvider | None = None,
        executor_factory: ExecutorFactory | None = None,
        policy: ContinuationPolicy | None = None,
        default_timeout: float | None = 60,
        shell: str | None = None,
        logger: logging.Logger | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.playbook = playbook
        self.host_provider = host_provider or HostContextProvider()
        self.executor_factory = executor_factory
        self.policy = policy or ContinuationPolicy()
        self.default_timeout = default_timeout
        self.shell = shell
        self.logger = logger or logging.getLogger(__name__)
        self.cancel_event = cancel_event or threading.Event()
        self.state = RunState.PENDING

    def cancel(self) -> None:
        """Abort the run; an in-flight command is killed promptly."""
        self.cancel_event.set()

    def _make_executor(self, host: HostFacts) -> ProcessExecutor:
        if self.executor_factory is not None:
            return self.executor_factory(host)
        return ProcessExecutor(host.os, shell=self.shell, logger=self.logger)

    def run(self) -> PlaybookResult:
        if self.state is not RunState.PENDING:
            raise RuntimeError(f"Runner already used (state: {self.state.value})")

        result = PlaybookResult(
            title=self.playbook.title, state=RunState.PENDING, started_at=_now()
        )
        result.section_descriptions = {
            group.title: list(group.description) for group in self.playbook.iter_groups()
        }

        try:
            host = self.host_provider.build()
        except HostDetectionError as e:
            self.logger.error(f"Host detection failed, aborting run: {e}")
            return self._abort(result, e)

        result.host = host
        self.state = RunState.RUNNING
        self.logger.info(
            f"Running playbook '{self.playbook.title}' on {host.os}/{host.arch} as '{host.user}'"
        )

        executor = self._make_executor(host)
        store = AssertionContext()
        try:
            result.halted_at = self._run_items(
                self.playbook.items, store, host, executor, result.results, None
            )
        except (RunCancelled, KeyboardInterrupt) as e:
            self.logger.warning(
                f"Run cancelled after {len(result.results)} assertion(s); discarding context"
            )
            return self._abort(result, RunCancelled(str(e) or "Run cancelled"))

        self.state = RunState.COMPLETED
        result.state = RunState.COMPLETED
        result.context = store.to_dict()
        if result.results:
            result.score = Score.worst(r.score for r in result.results)
        result.finished_at = _now()
        counts = result.counts()
        self.logger.info(
            f"Playbook '{self.playbook.title}' completed: {result.score} "
            f"(pass={counts['pass']}, fail={counts['fail']}, neutral={counts['neutral']})"
        )
        return result

    def _abort(self, result: PlaybookResult, exc: BaseException) -> PlaybookResult:
        self.state = RunState.ABORTED
        result.state = RunState.ABORTED
        result.score = Score.FAIL
        result.context = {}
        result.error = describe_error(exc)
        result.finished_at = _now()
        return result

    def _run_items(
        self,
        items: Sequence[Assertion | AssertionGroup],
        store: AssertionContext,
        host: HostFacts,
        executor: ProcessExecutor,
        results: list[AssertionResult],
        group: str | None,
    ) -> str | None:
        """Run items in order; return the code that halted the run, if any."""
        for item in items:
            if self.cancel_event.is_set():
                raise RunCancelled("Run cancelled")

            if isinstance(item, AssertionGroup):
                self.logger.info(f"Processing section: {item.title}")
                scope = store.child_scope() if item.isolated else store
                halted = self._run_items(item.items, scope, host, executor, results, item.title)
                if halted is not None:
                    return halted
                continue

            assertion_result = self._run_assertion(item, store, host, executor, group)
            results.append(assertion_result)
            if self._should_halt(assertion_result):
                self.logger.warning(f"Halting run after assertion {item.code}")
                return item.code
        return None

    def _should_halt(self, result: AssertionResult) -> bool:
        if result.error is not None and not self.policy.continue_on_error:
            return True
        return result.score is Score.FAIL and not self.policy.continue_on_fail

    def _run_assertion(
        self,
        assertion: Assertion,
        store: AssertionContext,
        host: HostFacts,
        executor: ProcessExecutor,
        group: str | None,
    ) -> AssertionResult:
        result = AssertionResult(
            code=assertion.code,
            score=Score.NEUTRAL,
            title=assertion.title,
            group=group,
            description=assertion.description,
        )
        timeout = assertion.timeout if assertion.timeout is not None else self.default_timeout
        self.logger.info(f"Assertion {assertion.code}: {assertion.title}")

        self._run_hooks(assertion, assertion.pre, build_script_context(store, host), executor, timeout, "pre")

        try:
            context = build_script_context(store, host)
            command = self._generate(assertion.generator, context)
            result.command = command

            if not command.strip():
                result.skipped = True
                result.message = "Empty command, nothing executed"
                self.logger.info(f"Assertion {assertion.code} generated an empty command, skipping")
            else:
                execution = executor.execute(command, timeout, self.cancel_event, shell=assertion.shell)
                self._record_execution(result, execution)
                if execution.timed_out:
                    raise ExecutionTimeoutError(
                        f"Command timed out after {timeout}s", result=execution
                    )

                result.score = EvaluationPipeline(assertion.evaluators, self.logger).evaluate(
                    execution.stdout, execution.stderr, store.snapshot()
                )
                try:
                    result.gathered = GatherPipeline(assertion.gatherers, self.logger).gather(
                        execution.stdout, execution.stderr, store
                    )
                except GatherError as e:
                    e.code = assertion.code
                    result.gathered = e.gathered
                    result.error = describe_error(e)
                    self.logger.warning(f"Assertion {assertion.code}: {e}")
        except (ScriptGenerationError, ExecutionError, ExecutionTimeoutError, EvaluationError) as e:
            e.code = assertion.code
            result.score = Score.FAIL
            result.error = describe_error(e)
            self.logger.warning(f"Assertion {assertion.code} failed with {type(e).__name__}: {e}")

        self._run_hooks(assertion, assertion.post, build_script_context(store, host), executor, timeout, "post")

        if result.error is not None:
            result.message = result.error["message"]
        elif result.score is Score.PASS:
            result.message = assertion.pass_description or result.message
        elif result.score is Score.FAIL:
            result.message = assertion.fail_description or result.message
        self.logger.info(f"Assertion {assertion.code}: {result.score}")
        return result

    def _generate(self, generator: ScriptGenerator, context: ScriptContext) -> str:
        try:
            command = generator.generate(context)
        except ScriptGenerationError:
            raise
        except Exception as e:
            raise ScriptGenerationError(f"Script generator raised: {e}") from e
        if command is None:
            return ""
        if not isinstance(command, str):
            raise ScriptGenerationError(
                f"Script generator returned {type(command).__name__}, expected str"
            )
        return command

    def _record_execution(self, result: AssertionResult, execution: ExecutionResult) -> None:
        result.stdout = execution.stdout
        result.stderr = execution.stderr
        result.exit_code = execution.exit_code
        result.duration_seconds = execution.duration_seconds
        result.timed_out = execution.timed_out

    def _run_hooks(
        self,
        assertion: Assertion,
        generators: Sequence[ScriptGenerator],
        context: ScriptContext,
        executor: ProcessExecutor,
        timeout: float | None,
        stage: str,
    ) -> None:
        """Run setup/teardown scripts. Their errors are logged, never scored."""
        code = assertion.code
        for generator in generators:
            try:
                command = self._generate(generator, context)
                if not command.strip():
                    continue
                execution = executor.execute(command, timeout, self.cancel_event, shell=assertion.shell)
                if execution.timed_out:
                    self.logger.warning(f"{stage} script of {code} timed out after {timeout}s")
                elif execution.exit_code != 0:
                    self.logger.warning(
                        f"{stage} script of {code} exited with code {execution.exit_code}"
                    )
            except AssertionExecutionError as e:
                self.logger.warning(f"{stage} script of {code} failed: {e}")
