"""Tests for evaluator combination and gather write semantics."""

import pytest

from complianceprobe.assertions.base import Evaluator, Gatherer, Score
from complianceprobe.assertions.builtin import CallableEvaluator, CallableGatherer, RegexGatherer
from complianceprobe.context import AssertionContext
from complianceprobe.errors import EvaluationError, GatherError
from complianceprobe.pipelines import EvaluationPipeline, GatherPipeline


class _Fixed(Evaluator):
    def __init__(self, value):
        self.value = value
        self.calls = 0

    def evaluate(self, stdout, stderr, assertion_context):
        self.calls += 1
        return self.value


class _Boom(Evaluator):
    def evaluate(self, stdout, stderr, assertion_context):
        raise RuntimeError("boom")


# --- EvaluationPipeline ---


@pytest.mark.parametrize(
    "values,expected",
    [
        ([0, 0, -1, 1], Score.FAIL),
        ([0, 1, -1], Score.PASS),
        ([0, 0, 0], Score.NEUTRAL),
        ([], Score.NEUTRAL),
        ([Score.NEUTRAL, Score.PASS], Score.PASS),
    ],
)
def test_first_strong_opinion_wins(values, expected):
    assert EvaluationPipeline([_Fixed(v) for v in values]).evaluate("", "", {}) is expected


def test_evaluators_after_decision_are_skipped():
    evaluators = [_Fixed(0), _Fixed(-1), _Fixed(1)]
    EvaluationPipeline(evaluators).evaluate("", "", {})
    assert [e.calls for e in evaluators] == [1, 1, 0]


def test_raising_evaluator_becomes_evaluation_error():
    with pytest.raises(EvaluationError, match="boom"):
        EvaluationPipeline([_Fixed(0), _Boom()]).evaluate("", "", {})


def test_raising_evaluator_after_decision_is_never_called():
    assert EvaluationPipeline([_Fixed(1), _Boom()]).evaluate("", "", {}) is Score.PASS


def test_out_of_range_value_becomes_evaluation_error():
    with pytest.raises(EvaluationError, match="returned 5"):
        EvaluationPipeline([_Fixed(5)]).evaluate("", "", {})


def test_evaluators_receive_output_and_context():
    seen = {}

    def _capture(stdout, stderr, ctx):
        seen.update(stdout=stdout, stderr=stderr, ctx=dict(ctx))
        return 0

    EvaluationPipeline([CallableEvaluator(_capture)]).evaluate("o", "e", {"k": "v"})
    assert seen == {"stdout": "o", "stderr": "e", "ctx": {"k": "v"}}


# --- GatherPipeline ---


def test_gathered_values_are_written_to_store():
    store = AssertionContext()
    gathered = GatherPipeline([RegexGatherer("version", r"v([\d.]+)")]).gather("tool v1.2.3", "", store)
    assert gathered == {"version": "1.2.3"}
    assert store.get("version") == "1.2.3"


def test_later_gatherer_wins_on_key_collision():
    store = AssertionContext()
    pipeline = GatherPipeline(
        [
            CallableGatherer("version", lambda o, e, c: "first"),
            CallableGatherer("version", lambda o, e, c: "second"),
        ]
    )
    assert pipeline.gather("", "", store) == {"version": "second"}
    assert store.get("version") == "second"


def test_gatherers_see_earlier_writes():
    store = AssertionContext()
    pipeline = GatherPipeline(
        [
            CallableGatherer("major", lambda o, e, c: o.split(".")[0]),
            CallableGatherer("label", lambda o, e, c: f"v{c['major']}"),
        ]
    )
    pipeline.gather("3.11.2", "", store)
    assert store.get("label") == "v3"


def test_gatherers_cannot_mutate_store_directly():
    class _Sneaky(Gatherer):
        key = "sneaky"

        def gather(self, stdout, stderr, assertion_context):
            assertion_context["other"] = "x"
            return "y"

    store = AssertionContext()
    with pytest.raises(GatherError):
        GatherPipeline([_Sneaky()]).gather("", "", store)
    assert "other" not in store


def test_gather_error_keeps_earlier_values():
    def _fail(stdout, stderr, ctx):
        raise ValueError("no match")

    store = AssertionContext()
    pipeline = GatherPipeline(
        [
            CallableGatherer("a", lambda o, e, c: "1"),
            CallableGatherer("b", _fail),
            CallableGatherer("c", lambda o, e, c: "3"),
        ]
    )
    with pytest.raises(GatherError) as exc_info:
        pipeline.gather("", "", store)
    assert exc_info.value.key == "b"
    assert exc_info.value.gathered == {"a": "1"}
    assert store.get("a") == "1"
    assert store.get("c") is None


def test_gatherer_without_key_becomes_gather_error():
    class _NoKey(Gatherer):
        def gather(self, stdout, stderr, assertion_context):
            return "value"

    store = AssertionContext()
    with pytest.raises(GatherError) as exc_info:
        GatherPipeline([CallableGatherer("a", lambda o, e, c: "1"), _NoKey()]).gather("", "", store)
    assert exc_info.value.gathered == {"a": "1"}
    assert len(store) == 1


def test_empty_key_becomes_gather_error():
    store = AssertionContext()
    with pytest.raises(GatherError, match="no usable key"):
        GatherPipeline([CallableGatherer("", lambda o, e, c: "1")]).gather("", "", store)
    assert len(store) == 0
