from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from boto3.dynamodb.types import Binary, TypeDeserializer, TypeSerializer

from .errors import ValidationError

type AttributeValue = dict[str, Any]
type AttributeMap = dict[str, AttributeValue]

KINDS = frozenset({"S", "N", "B", "BOOL", "L", "M", "SS", "NS", "BS", "NULL"})


def _is_number_string(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        number = Decimal(value)
    except InvalidOperation:
        return False
    return number.is_finite()


def validate_attribute_value(av: Any) -> tuple[str, Any]:
    """Check the single-variant invariant of a wire attribute value.

    Returns the ``(kind, payload)`` pair. Nested lists and maps are checked
    recursively.
    """
    if not isinstance(av, dict) or len(av) != 1:
        raise ValidationError("attribute value must be a single-key map")
    ((kind, value),) = av.items()

    if kind == "S":
        if not isinstance(value, str):
            raise ValidationError("S value must be a string")
    elif kind == "N":
        if not _is_number_string(value):
            raise ValidationError("N value must be a numeric string")
    elif kind == "B":
        if not isinstance(value, (bytes, bytearray)):
            raise ValidationError("B value must be bytes")
    elif kind == "BOOL":
        if not isinstance(value, bool):
            raise ValidationError("BOOL value must be a boolean")
    elif kind == "NULL":
        if value is not True:
            raise ValidationError("NULL value must be true")
    elif kind == "SS":
        if not isinstance(value, (list, tuple, set)) or not all(isinstance(v, str) for v in value):
            raise ValidationError("SS value must be a list of strings")
    elif kind == "NS":
        if not isinstance(value, (list, tuple, set)) or not all(_is_number_string(v) for v in value):
            raise ValidationError("NS value must be a list of numeric strings")
    elif kind == "BS":
        if not isinstance(value, (list, tuple, set)) or not all(
            isinstance(v, (bytes, bytearray)) for v in value
        ):
            raise ValidationError("BS value must be a list of bytes")
    elif kind == "L":
        if not isinstance(value, list):
            raise ValidationError("L value must be a list")
        for v in value:
            validate_attribute_value(v)
    elif kind == "M":
        if not isinstance(value, dict):
            raise ValidationError("M value must be a map")
        for k, v in value.items():
            if not isinstance(k, str):
                raise ValidationError("M keys must be strings")
            validate_attribute_value(v)
    else:
        raise ValidationError(f"unsupported attribute value type: {kind}")

    return str(kind), value


_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _normalize(value: Any) -> Any:
    """Rewrite the Python values the boto3 serializer does not accept itself."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, float):
        number = Decimal(str(value))
        if not number.is_finite():
            raise ValidationError("numbers must be finite")
        return number
    if isinstance(value, bytearray):
        return bytes(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        if not value:
            raise ValidationError("empty sets cannot be stored")
        members = {_normalize(v) for v in value}
        if not (
            all(isinstance(v, str) for v in members)
            or all(isinstance(v, bytes) for v in members)
            or all(isinstance(v, (int, Decimal)) and not isinstance(v, bool) for v in members)
        ):
            raise ValidationError("sets must contain only strings, numbers or bytes")
        return members
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def _sorted_sets(av: AttributeValue) -> AttributeValue:
    ((kind, value),) = av.items()
    if kind == "NS":
        return {kind: sorted(value, key=Decimal)}
    if kind in {"SS", "BS"}:
        return {kind: sorted(value)}
    if kind == "L":
        return {kind: [_sorted_sets(v) for v in value]}
    if kind == "M":
        return {kind: {k: _sorted_sets(v) for k, v in value.items()}}
    return av


def attribute_value(value: Any) -> AttributeValue:
    """Convert a Python value into its wire attribute value."""
    try:
        serialized = _serializer.serialize(_normalize(value))
    except (TypeError, ArithmeticError) as err:
        raise ValidationError(f"unsupported attribute value: {err}") from err
    return _sorted_sets(serialized)


def _from_boto(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else value
    if isinstance(value, Binary):
        return bytes(value.value)
    if isinstance(value, set):
        return {_from_boto(v) for v in value}
    if isinstance(value, list):
        return [_from_boto(v) for v in value]
    if isinstance(value, dict):
        return {k: _from_boto(v) for k, v in value.items()}
    return value


def to_python(av: AttributeValue) -> Any:
    validate_attribute_value(av)
    try:
        return _from_boto(_deserializer.deserialize(av))
    except ArithmeticError as err:
        raise ValidationError(f"unsupported number: {err}") from err


def _payload(av: AttributeValue | None, kind: str) -> Any:
    if not isinstance(av, dict) or len(av) != 1:
        return None
    return av.get(kind)


def as_string(av: AttributeValue | None) -> str | None:
    value = _payload(av, "S")
    return value if isinstance(value, str) else None


def as_number(av: AttributeValue | None) -> Decimal | None:
    value = _payload(av, "N")
    if not _is_number_string(value):
        return None
    return Decimal(value)


def as_int(av: AttributeValue | None) -> int | None:
    number = as_number(av)
    if number is None or number != number.to_integral_value():
        return None
    return int(number)


def as_bool(av: AttributeValue | None) -> bool | None:
    value = _payload(av, "BOOL")
    return value if isinstance(value, bool) else None


def as_binary(av: AttributeValue | None) -> bytes | None:
    value = _payload(av, "B")
    return bytes(value) if isinstance(value, (bytes, bytearray)) else None


def as_list(av: AttributeValue | None) -> list[AttributeValue] | None:
    value = _payload(av, "L")
    return value if isinstance(value, list) else None


def as_map(av: AttributeValue | None) -> AttributeMap | None:
    value = _payload(av, "M")
    return value if isinstance(value, dict) else None


def as_string_set(av: AttributeValue | None) -> set[str] | None:
    value = _payload(av, "SS")
    return set(value) if isinstance(value, (list, tuple, set)) else None


def as_number_set(av: AttributeValue | None) -> set[Decimal] | None:
    value = _payload(av, "NS")
    if not isinstance(value, (list, tuple, set)) or not all(_is_number_string(v) for v in value):
        return None
    return {Decimal(v) for v in value}


def is_null(av: AttributeValue | None) -> bool:
    return _payload(av, "NULL") is True


def to_json_dict(av: AttributeValue) -> dict[str, Any]:
    kind, value = validate_attribute_value(av)

    if kind == "B":
        return {"B": base64.b64encode(bytes(value)).decode("ascii")}
    if kind == "BS":
        return {"BS": [base64.b64encode(bytes(v)).decode("ascii") for v in value]}
    if kind in {"SS", "NS"}:
        return {kind: list(value)}
    if kind == "L":
        return {"L": [to_json_dict(v) for v in value]}
    if kind == "M":
        return {"M": {k: to_json_dict(value[k]) for k in sorted(value)}}
    return {kind: value}


def _b64decode(value: Any, what: str) -> bytes:
    if not isinstance(value, str):
        raise ValidationError(f"{what} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValidationError(f"{what} is not valid base64") from err


def from_json_dict(enc: Any) -> AttributeValue:
    if not isinstance(enc, dict) or len(enc) != 1:
        raise ValidationError("attribute value must be a single-key map")
    ((kind, value),) = enc.items()

    if kind == "B":
        return {"B": _b64decode(value, "B value")}
    if kind == "BS":
        if not isinstance(value, list):
            raise ValidationError("BS value must be a list of base64 strings")
        return {"BS": [_b64decode(v, "BS element") for v in value]}
    if kind == "L":
        if not isinstance(value, list):
            raise ValidationError("L value must be a list")
        return {"L": [from_json_dict(v) for v in value]}
    if kind == "M":
        if not isinstance(value, dict):
            raise ValidationError("M value must be a map")
        return {"M": {str(k): from_json_dict(v) for k, v in value.items()}}

    out = {str(kind): value}
    validate_attribute_value(out)
    return out


def _dumps(data: Any) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False, sort_keys=True)


def _loads(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as err:
        raise ValidationError("attribute json is invalid") from err


def to_json(av: AttributeValue) -> str:
    return _dumps(to_json_dict(av))


def from_json(raw: str) -> AttributeValue:
    return from_json_dict(_loads(raw))


def item_to_json_dict(item: Mapping[str, AttributeValue]) -> dict[str, Any]:
    return {str(k): to_json_dict(item[k]) for k in sorted(item)}


def item_from_json_dict(enc: Any) -> AttributeMap:
    if not isinstance(enc, dict):
        raise ValidationError("item json must be an object")
    return {str(k): from_json_dict(v) for k, v in enc.items()}


def item_to_json(item: Mapping[str, AttributeValue]) -> str:
    return _dumps(item_to_json_dict(item))


def item_from_json(raw: str) -> AttributeMap:
    return item_from_json_dict(_loads(raw))


def find_differences(
    first: Mapping[str, AttributeValue] | None,
    second: Mapping[str, AttributeValue] | None,
) -> list[str]:
    """Names of the attributes that differ between two attribute maps."""
    if first is None and second is None:
        return []
    if first is None:
        return sorted(second or {})
    if second is None:
        return sorted(first)
    return sorted(k for k in first.keys() | second.keys() if first.get(k) != second.get(k))


def attribute_value_of(value: Any) -> AttributeValue:
    """Like ``attribute_value`` but passes a valid wire dict through untouched."""
    if isinstance(value, dict) and len(value) == 1 and next(iter(value)) in KINDS:
        try:
            validate_attribute_value(value)
        except ValidationError:
            return attribute_value(value)
        return value
    return attribute_value(value)


def key_map(pk_name: str, sk_name: str | None, pk: str, sk: str | None = None) -> AttributeMap:
    if not pk:
        raise ValidationError("partition key value is required")
    key: AttributeMap = {pk_name: {"S": pk}}
    if sk_name is not None:
        if sk is None:
            raise ValidationError(f"sort key value is required: {sk_name}")
        key[sk_name] = {"S": sk}
    elif sk is not None:
        raise ValidationError("table has no sort key")
    return key
