# tests/test_conditions.py
"""Tests for condition evaluation."""
import pytest

from planflow.execution.conditions import (
    ConditionEvaluator, all_of, any_of, condition_from_string,
    describe_condition, field_exists, negate, validate_condition,
)
from planflow.plan.models import Condition, ConditionType


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


def cond(kind, field="", **kwargs):
    return Condition(type=kind, field=field, **kwargs)


def test_equals_is_strict(evaluator, context):
    context.set_variable("flag", True)
    context.set_variable("count", 1)

    assert evaluator.evaluate(cond(ConditionType.EQUALS, "variables.flag", value=True), context)
    assert not evaluator.evaluate(cond(ConditionType.EQUALS, "variables.flag", value=1), context)
    assert not evaluator.evaluate(cond(ConditionType.EQUALS, "variables.count", value=True), context)
    assert evaluator.evaluate(cond(ConditionType.EQUALS, "variables.count", value=1.0), context)
    assert not evaluator.evaluate(cond(ConditionType.EQUALS, "variables.count", value="1"), context)


def test_numeric_comparisons_coerce(evaluator, context):
    context.set_step_output("check", {"score": "25", "label": "high"})

    assert evaluator.evaluate(cond(ConditionType.LESS_THAN, "step_outputs.check.score", value=30), context)
    assert evaluator.evaluate(cond(ConditionType.GREATER_THAN_OR_EQUAL, "step_outputs.check.score", value=25), context)
    # Non-numeric values compare as NaN
    assert not evaluator.evaluate(cond(ConditionType.GREATER_THAN, "step_outputs.check.label", value=1), context)
    assert not evaluator.evaluate(cond(ConditionType.LESS_THAN, "step_outputs.check.label", value=1), context)


def test_contains_and_not_contains(evaluator, context):
    context.set_variable("text", "spam and eggs")
    context.set_variable("ids", ["1", "2"])
    context.set_variable("number", 42)

    assert evaluator.evaluate(cond(ConditionType.CONTAINS, "variables.text", value="eggs"), context)
    assert evaluator.evaluate(cond(ConditionType.CONTAINS, "variables.ids", value="2"), context)
    assert evaluator.evaluate(cond(ConditionType.NOT_CONTAINS, "variables.ids", value="3"), context)
    assert not evaluator.evaluate(cond(ConditionType.CONTAINS, "variables.number", value=4), context)
    assert not evaluator.evaluate(cond(ConditionType.NOT_CONTAINS, "variables.number", value=4), context)


def test_malformed_pattern_is_false(evaluator, context):
    context.set_variable("name", "spammer")

    assert evaluator.evaluate(cond(ConditionType.MATCHES, "variables.name", value="^spam"), context)
    assert evaluator.evaluate(cond(ConditionType.MATCHES, "variables.name", value="(["), context) is False


def test_missing_field_fails_everything_but_not_exists(evaluator, context):
    field = "step_outputs.nope.value"

    assert evaluator.evaluate(cond(ConditionType.NOT_EXISTS, field), context)
    assert not evaluator.evaluate(cond(ConditionType.EXISTS, field), context)
    assert not evaluator.evaluate(cond(ConditionType.NOT_EQUALS, field, value=1), context)
    assert not evaluator.evaluate(cond(ConditionType.NOT_CONTAINS, field, value="x"), context)


def test_aliases_resolve(evaluator, context):
    context.set_step_output("fetch", {"items": [1, 2, 3]})
    context.last_referenced["users"] = ["u1"]

    assert evaluator.evaluate(cond(ConditionType.EXISTS, "stepResults.fetch.items.2"), context)
    assert evaluator.evaluate(cond(ConditionType.CONTAINS, "lastUsers", value="u1"), context)


def test_custom_predicate_errors_are_false(evaluator, context):
    def explode(_):
        raise RuntimeError("nope")

    assert evaluator.evaluate(cond(ConditionType.CUSTOM, custom_fn=lambda ctx: True), context)
    assert evaluator.evaluate(cond(ConditionType.CUSTOM, custom_fn=explode), context) is False
    assert evaluator.evaluate(cond(ConditionType.CUSTOM), context) is False


def test_evaluate_all_and_any(evaluator, context):
    context.set_variable("x", 5)
    yes = cond(ConditionType.GREATER_THAN, "variables.x", value=1)
    no = cond(ConditionType.LESS_THAN, "variables.x", value=1)

    assert evaluator.evaluate_all([yes, yes], context)
    assert not evaluator.evaluate_all([yes, no], context)
    assert evaluator.evaluate_any([no, yes], context)
    assert not evaluator.evaluate_any([no], context)


def test_condition_from_string():
    parsed = condition_from_string("variables.score < 30")
    assert parsed.type == ConditionType.LESS_THAN
    assert parsed.field == "variables.score"
    assert parsed.value == 30

    assert condition_from_string("variables.score >= 2.5").type == ConditionType.GREATER_THAN_OR_EQUAL
    assert condition_from_string("variables.name == 'ann'").value == "ann"
    assert condition_from_string("variables.user exists").type == ConditionType.EXISTS
    assert condition_from_string("variables.user not exists").type == ConditionType.NOT_EXISTS
    assert condition_from_string("") is None
    assert condition_from_string("just words") is None


def test_validate_condition():
    assert validate_condition(cond(ConditionType.EXISTS, "variables.a")) == (True, None)

    valid, message = validate_condition(cond(ConditionType.EQUALS, "variables.a"))
    assert not valid
    assert "requires a value" in message

    assert validate_condition(cond(ConditionType.EQUALS, "", value=1))[0] is False
    assert validate_condition(cond(ConditionType.CUSTOM))[0] is False


def test_combinators(evaluator, context):
    context.set_variable("x", 5)
    big = cond(ConditionType.GREATER_THAN, "variables.x", value=3)
    small = cond(ConditionType.LESS_THAN, "variables.x", value=3)

    assert evaluator.evaluate(all_of(big, field_exists("variables.x")), context)
    assert not evaluator.evaluate(all_of(big, small), context)
    assert evaluator.evaluate(any_of(small, big), context)
    assert evaluator.evaluate(negate(small), context)
    assert describe_condition(big) == "variables.x is greater than 3"
