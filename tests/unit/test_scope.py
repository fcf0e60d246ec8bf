import pytest

from nexusflow.errors import MappingError
from nexusflow.scope import Scope


def test_bind_returns_new_scope():
    start = Scope.start({"deviceId": "s-1", "reading": {"temp": 20}})
    bound = start.bind({"id": 9}, "step1_output", "created")

    assert start.variables == {}
    assert start.last == {"deviceId": "s-1", "reading": {"temp": 20}}
    assert bound.variables["step1_output"] == {"id": 9}
    assert bound.variables["created"] == {"id": 9}
    assert bound.last == {"id": 9}


def test_resolve_references():
    scope = Scope.start({"deviceId": "s-1", "reading": {"temp": 20}}).bind({"id": 9}, "step1_output")
    assert scope.resolve("$trigger.deviceId") == "s-1"
    assert scope.resolve("$trigger.reading.temp") == 20
    assert scope.resolve("$step1_output") == {"id": 9}
    assert scope.resolve("$step1_output.id") == 9


@pytest.mark.parametrize("reference", ["$step2_output", "$trigger.nope"])
def test_unresolved_reference(reference):
    scope = Scope.start({"a": 1})
    with pytest.raises(MappingError) as exc:
        scope.resolve(reference)
    assert exc.value.kind == MappingError.UNRESOLVED_VARIABLE


def test_render_input():
    scope = Scope.start({"a": 1}).bind({"b": 2}, "step1_output")
    assert scope.render_input(None) == {"b": 2}
    assert scope.render_input({"x": "$trigger.a", "y": "$step1_output.b", "z": "literal"}) == {
        "x": 1,
        "y": 2,
        "z": "literal",
    }
