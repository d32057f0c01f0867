from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum

import pytest
from boto3.dynamodb.types import TypeSerializer

from dynaitem_py import ValidationError
from dynaitem_py import attributes as av


class Color(Enum):
    RED = 1


@pytest.mark.parametrize(
    "raw",
    [
        '{"S":"hello"}',
        '{"N":"12.50"}',
        '{"BOOL":false}',
        '{"NULL":true}',
        '{"B":"aGk="}',
        '{"SS":["a","b"]}',
        '{"NS":["1","2.5"]}',
        '{"BS":["AA==","AQ=="]}',
        '{"L":[{"S":"x"},{"N":"1"}]}',
        '{"M":{"a":{"BOOL":true},"b":{"M":{"c":{"S":"d"}}}}}',
        '{"L":[]}',
        '{"M":{}}',
        '{"SS":[]}',
    ],
)
def test_json_projection_is_canonical(raw: str) -> None:
    value = av.from_json(raw)
    assert av.to_json(value) == raw
    assert av.from_json(av.to_json(value)) == value


def test_json_projection_encodes_binary_and_sorts_map_keys() -> None:
    value = {"M": {"z": {"B": b"hi"}, "a": {"N": "1"}}}
    assert av.to_json(value) == '{"M":{"a":{"N":"1"},"z":{"B":"aGk="}}}'
    assert av.from_json('{"B":"aGk="}') == {"B": b"hi"}


def test_item_json_round_trip() -> None:
    item = {"pk": {"S": "p"}, "data": {"L": [{"NULL": True}]}}
    raw = av.item_to_json(item)
    assert raw == '{"data":{"L":[{"NULL":true}]},"pk":{"S":"p"}}'
    assert av.item_from_json(raw) == item


@pytest.mark.parametrize(
    "raw",
    ["{}", '{"X":"1"}', '{"S":"a","N":"1"}', '{"N":"abc"}', '{"B":"***"}', '{"NULL":false}', "not json"],
)
def test_json_projection_rejects_malformed_values(raw: str) -> None:
    with pytest.raises(ValidationError):
        av.from_json(raw)


def test_validate_attribute_value_checks_nested_values() -> None:
    assert av.validate_attribute_value({"L": [{"S": "x"}]}) == ("L", [{"S": "x"}])
    with pytest.raises(ValidationError, match="single-key"):
        av.validate_attribute_value({"L": [{}]})
    with pytest.raises(ValidationError, match="unsupported"):
        av.validate_attribute_value({"Q": 1})


def test_attribute_value_converts_python_values() -> None:
    assert av.attribute_value("x") == {"S": "x"}
    assert av.attribute_value(True) == {"BOOL": True}
    assert av.attribute_value(3) == {"N": "3"}
    assert av.attribute_value(1.5) == {"N": "1.5"}
    assert av.attribute_value(Decimal("2.10")) == {"N": "2.10"}
    assert av.attribute_value(None) == {"NULL": True}
    assert av.attribute_value(b"\x00") == {"B": b"\x00"}
    assert av.attribute_value(Color.RED) == {"S": "RED"}
    assert av.attribute_value(date(2024, 1, 2)) == {"S": "2024-01-02"}
    assert av.attribute_value(datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)) == {"S": "2024-01-02T03:04:05+00:00"}
    assert av.attribute_value({"b", "a"}) == {"SS": ["a", "b"]}
    assert av.attribute_value({2, 1}) == {"NS": ["1", "2"]}
    assert av.attribute_value({"k": [1, "v"]}) == {"M": {"k": {"L": [{"N": "1"}, {"S": "v"}]}}}


@pytest.mark.parametrize("value", [set(), float("nan"), object(), {1, "a"}])
def test_attribute_value_rejects_unsupported_values(value: object) -> None:
    with pytest.raises(ValidationError):
        av.attribute_value(value)


def test_attribute_value_of_passes_wire_values_through() -> None:
    wire = {"S": "x"}
    assert av.attribute_value_of(wire) is wire
    assert av.attribute_value_of({"name": "x"}) == {"M": {"name": {"S": "x"}}}
    assert av.attribute_value_of(5) == {"N": "5"}


def test_to_python_converts_numbers_and_collections() -> None:
    assert av.to_python({"N": "4"}) == 4
    assert av.to_python({"N": "4.5"}) == Decimal("4.5")
    assert av.to_python({"NS": ["1", "1.5"]}) == {1, Decimal("1.5")}
    assert av.to_python({"M": {"a": {"L": [{"NULL": True}, {"BOOL": True}]}}}) == {"a": [None, True]}


def test_accessors_return_none_on_variant_mismatch() -> None:
    assert av.as_string({"N": "1"}) is None
    assert av.as_string(None) is None
    assert av.as_number({"S": "1"}) is None
    assert av.as_int({"N": "1.5"}) is None
    assert av.as_int({"N": "2"}) == 2
    assert av.as_bool({"BOOL": True}) is True
    assert av.as_binary({"B": b"x"}) == b"x"
    assert av.as_list({"M": {}}) is None
    assert av.as_map({"M": {"a": {"S": "b"}}}) == {"a": {"S": "b"}}
    assert av.as_string_set({"SS": ["a"]}) == {"a"}
    assert av.as_number_set({"NS": ["1", "2"]}) == {Decimal(1), Decimal(2)}
    assert av.is_null({"NULL": True}) is True
    assert av.is_null({"S": "x"}) is False


def test_find_differences() -> None:
    first = {"a": {"S": "1"}, "b": {"S": "2"}}
    second = {"a": {"S": "1"}, "b": {"S": "3"}, "c": {"S": "4"}}
    assert av.find_differences(first, second) == ["b", "c"]
    assert av.find_differences(None, second) == ["a", "b", "c"]
    assert av.find_differences(first, None) == ["a", "b"]
    assert av.find_differences(None, None) == []


def test_key_map() -> None:
    assert av.key_map("pk", "sk", "a", "b") == {"pk": {"S": "a"}, "sk": {"S": "b"}}
    assert av.key_map("id", None, "a") == {"id": {"S": "a"}}
    with pytest.raises(ValidationError, match="sort key value is required"):
        av.key_map("pk", "sk", "a")
    with pytest.raises(ValidationError, match="no sort key"):
        av.key_map("id", None, "a", "b")
    with pytest.raises(ValidationError, match="partition key"):
        av.key_map("pk", "sk", "", "b")


def test_conversion_matches_the_boto3_serializer() -> None:
    value = {"name": "Jon", "n": Decimal("1.50"), "flags": [True, None], "blob": b"\x01"}
    assert av.attribute_value(value) == TypeSerializer().serialize(value)
    assert av.attribute_value(frozenset({b"b", b"a"})) == {"BS": [b"a", b"b"]}
    assert av.attribute_value({10, 9, Decimal("2.5")}) == {"NS": ["2.5", "9", "10"]}


def test_to_python_unwraps_binary_values() -> None:
    assert av.to_python({"B": b"\x00"}) == b"\x00"
    assert type(av.to_python({"B": b"\x00"})) is bytes
    assert av.to_python({"BS": [b"a", b"b"]}) == {b"a", b"b"}
    assert av.to_python({"L": [{"N": "1.0"}, {"SS": ["x"]}]}) == [1, {"x"}]
