"""Evaluation and gather pipelines run over captured command output."""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from complianceprobe.assertions.base import Evaluator, Gatherer, Score
from complianceprobe.context import AssertionContext
from complianceprobe.errors import EvaluationError, GatherError


class EvaluationPipeline:
    """Combines evaluators with "first strong opinion wins".

    Evaluators run in declared order. The first one returning FAIL or PASS
    decides the score and the rest are skipped. All-neutral (or no
    evaluators) yields NEUTRAL.
    """

    def __init__(
        self,
        evaluators: Sequence[Evaluator],
        logger: logging.Logger | None = None,
    ) -> None:
        self.evaluators = list(evaluators)
        self.logger = logger or logging.getLogger(__name__)

    def evaluate(
        self, stdout: str, stderr: str, assertion_context: Mapping[str, str]
    ) -> Score:
        for index, evaluator in enumerate(self.evaluators):
            try:
                raw = evaluator.evaluate(stdout, stderr, assertion_context)
            except Exception as e:
                raise EvaluationError(
                    f"Evaluator #{index} ({type(evaluator).__name__}) raised: {e}"
                ) from e
            try:
                score = Score.coerce(raw)
            except ValueError as e:
                raise EvaluationError(f"Evaluator #{index} returned {raw!r}") from e

            self.logger.debug(f"Evaluator #{index} ({type(evaluator).__name__}) -> {score}")
            if score is not Score.NEUTRAL:
                return score
        return Score.NEUTRAL


class GatherPipeline:
    """Runs gatherers in order, writing each value into the context store."""

    def __init__(
        self,
        gatherers: Sequence[Gatherer],
        logger: logging.Logger | None = None,
    ) -> None:
        self.gatherers = list(gatherers)
        self.logger = logger or logging.getLogger(__name__)

    def gather(
        self, stdout: str, stderr: str, store: AssertionContext
    ) -> dict[str, str]:
        """Return the values written by this pipeline (last write per key wins).

        Raises:
            GatherError: a gatherer raised. Values written before it stay in
                the store and are available as ``GatherError.gathered``.
        """
        gathered: dict[str, str] = {}
        for index, gatherer in enumerate(self.gatherers):
            key = getattr(gatherer, "key", None)
            try:
                if not isinstance(key, str) or not key:
                    raise ValueError(f"gatherer #{index} has no usable key ({key!r})")
                value = gatherer.gather(stdout, stderr, store.snapshot())
                if not isinstance(value, str):
                    value = "" if value is None else str(value)
                store.set(key, value)
            except Exception as e:
                raise GatherError(
                    f"Gatherer for key '{key}' raised: {e}",
                    key=key,
                    gathered=gathered,
                ) from e
            gathered[key] = value
            self.logger.debug(f"Gathered {key}={value!r}")
        return gathered
