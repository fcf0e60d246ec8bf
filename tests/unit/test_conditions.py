import pytest

from nexusflow.conditions import evaluate, validate_expression
from nexusflow.errors import StepError

DATA = {"temp": 31, "status": "active", "tags": ["a", "b"], "meta": {"zone": "north"}}


@pytest.mark.parametrize(
    "expression, expected",
    [
        ({"field": "status", "operator": "eq", "value": "active"}, True),
        ({"field": "status", "value": "active"}, True),
        ({"field": "status", "operator": "neq", "value": "active"}, False),
        ({"field": "temp", "operator": "gt", "value": 30}, True),
        ({"field": "temp", "operator": "lte", "value": 30}, False),
        ({"field": "missing", "operator": "gt", "value": 0}, False),
        ({"field": "tags", "operator": "contains", "value": "b"}, True),
        ({"field": "meta.zone", "operator": "in", "value": ["north", "south"]}, True),
        ({"field": "meta.zone", "operator": "exists"}, True),
        ({"field": "missing", "operator": "not_exists"}, True),
    ],
)
def test_comparisons(expression, expected):
    assert evaluate(expression, DATA) is expected


def test_combinators():
    hot = {"field": "temp", "operator": "gt", "value": 30}
    idle = {"field": "status", "operator": "eq", "value": "idle"}
    assert evaluate({"all": [hot, {"not": idle}]}, DATA) is True
    assert evaluate({"any": [idle, {"not": hot}]}, DATA) is False


def test_malformed_expression_fails_the_step():
    with pytest.raises(StepError):
        evaluate({"field": "temp", "operator": "between"}, DATA)


def test_validate_expression_reports_paths():
    problems = validate_expression({"all": [{"field": "a"}, {"operator": "gt"}]})
    assert problems == ["conditionExpression.all[1].field: required"]
    assert validate_expression({"field": "a", "operator": "like"})[0].startswith(
        "conditionExpression.operator"
    )
    assert validate_expression(None) == ["conditionExpression: must be an object"]
