import pytest

from nexusflow.contracts import FieldMapping
from nexusflow.errors import MappingError, ValidationError
from nexusflow.mapping import ColumnInfo, MISSING, as_payload, auto_map, lookup, resolve_mappings


def test_lookup_prefers_exact_key_then_dotted_path():
    record = {"a.b": "flat", "a": {"b": [{"c": 1}]}}
    assert lookup(record, "a.b") == "flat"
    assert lookup(record, "a.b.0.c") == 1
    assert lookup(record, "a.x") is MISSING


def test_resolve_mappings_in_order_with_transform_and_type():
    mappings = [
        FieldMapping(source_field="temperature", destination_column="temp_c", data_type="number"),
        FieldMapping(
            source_field="meta.device",
            destination_column="device",
            transform_type="uppercase",
        ),
    ]
    resolved = resolve_mappings({"temperature": "25.5", "meta": {"device": "s-1"}}, mappings)
    assert resolved == [("temp_c", 25.5), ("device", "S-1")]
    assert as_payload(resolved) == {"temp_c": 25.5, "device": "S-1"}


def test_skip_removes_exactly_one_column():
    mappings = [
        FieldMapping(source_field="a", destination_column="col_a"),
        FieldMapping(source_field="b", destination_column="col_b", null_handling="skip"),
        FieldMapping(source_field="c", destination_column="col_c"),
    ]
    full = resolve_mappings({"a": 1, "b": 2, "c": 3}, mappings)
    partial = resolve_mappings({"a": 1, "c": 3}, mappings)
    assert [f.column for f in full] == ["col_a", "col_b", "col_c"]
    assert [f.column for f in partial] == ["col_a", "col_c"]


def test_use_default_is_coerced_but_not_transformed():
    mapping = FieldMapping(
        source_field="level",
        destination_column="level",
        data_type="integer",
        transform_type="round",
        default_value="3",
        null_handling="use_default",
    )
    assert resolve_mappings({}, [mapping]) == [("level", 3)]

    text = FieldMapping(
        source_field="name",
        destination_column="name",
        transform_type="uppercase",
        default_value="unknown",
        null_handling="use_default",
    )
    assert resolve_mappings({"name": None}, [text]) == [("name", "unknown")]


def test_required_field_missing():
    mapping = FieldMapping(source_field="deviceId", destination_column="device")
    with pytest.raises(MappingError) as exc:
        resolve_mappings({"temperature": 1}, [mapping])
    assert exc.value.kind == MappingError.MISSING_REQUIRED_FIELD
    assert exc.value.field == "deviceId"


def test_duplicate_destination_column_is_rejected():
    mappings = [
        FieldMapping(source_field="a", destination_column="x"),
        FieldMapping(source_field="b", destination_column="x"),
    ]
    with pytest.raises(ValidationError):
        resolve_mappings({"a": 1, "b": 2}, mappings)


def test_auto_map_is_case_insensitive_and_idempotent():
    fields = ["Temp", "device", "extra"]
    columns = ["temp", "DEVICE", "other"]

    first = auto_map(fields, columns)
    assert [(m.source_field, m.destination_column) for m in first] == [
        ("Temp", "temp"),
        ("device", "DEVICE"),
    ]
    assert auto_map(fields, columns) == first
    assert auto_map(fields, columns, existing=first) == first


def test_auto_map_keeps_existing_mappings():
    existing = [FieldMapping(source_field="device", destination_column="other")]
    result = auto_map(["device", "temp"], ["device", "temp", "other"], existing=existing)
    assert result[0] == existing[0]
    assert [(m.source_field, m.destination_column) for m in result[1:]] == [("temp", "temp")]


def test_auto_map_uses_column_metadata():
    columns = [
        ColumnInfo(name="temp_c", data_type="DECIMAL", is_nullable=True),
        ColumnInfo(name="device", data_type="NVARCHAR", is_nullable=False),
    ]
    result = auto_map(["TEMP_C", "device"], columns)
    assert [(m.null_handling, m.data_type) for m in result] == [
        ("skip", "DECIMAL"),
        ("required", "NVARCHAR"),
    ]
