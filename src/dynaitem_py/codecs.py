from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol

from . import attributes as av
from .attributes import AttributeValue
from .item import Item
from .mutable_item import MutableItem


class AttributeCodec[T](Protocol):
    def to_attribute(self, value: T) -> AttributeValue: ...

    def from_attribute(self, value: AttributeValue) -> T | None: ...


@dataclass(frozen=True)
class FunctionCodec[T]:
    encode: Callable[[T], AttributeValue]
    decode: Callable[[AttributeValue], T | None]

    def to_attribute(self, value: T) -> AttributeValue:
        return self.encode(value)

    def from_attribute(self, value: AttributeValue) -> T | None:
        return self.decode(value)


def _encode_instant(value: datetime) -> AttributeValue:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return {"S": value.isoformat()}


def _decode_instant(value: AttributeValue) -> datetime | None:
    raw = av.as_string(value)
    if raw is None:
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _decode_date(value: AttributeValue) -> date | None:
    raw = av.as_string(value)
    if raw is None:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


def _decode_json(value: AttributeValue) -> Any:
    raw = av.as_string(value)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


STRING: FunctionCodec[str] = FunctionCodec(lambda v: {"S": v}, av.as_string)
INT: FunctionCodec[int] = FunctionCodec(lambda v: {"N": str(int(v))}, av.as_int)
DECIMAL: FunctionCodec[Decimal] = FunctionCodec(av.attribute_value, av.as_number)
BOOL: FunctionCodec[bool] = FunctionCodec(lambda v: {"BOOL": bool(v)}, av.as_bool)
INSTANT: FunctionCodec[datetime] = FunctionCodec(_encode_instant, _decode_instant)
DATE: FunctionCodec[date] = FunctionCodec(lambda v: {"S": v.isoformat()}, _decode_date)
STRING_SET: FunctionCodec[set[str]] = FunctionCodec(av.attribute_value, av.as_string_set)
JSON: FunctionCodec[Any] = FunctionCodec(
    lambda v: {"S": json.dumps(v, separators=(",", ":"), sort_keys=True)},
    _decode_json,
)


def enum_codec[E: Enum](cls: type[E]) -> FunctionCodec[E]:
    """Stores an enum member by name; unknown names read back as None."""

    def decode(value: AttributeValue) -> E | None:
        name = av.as_string(value)
        if name is None:
            return None
        return cls.__members__.get(name)

    return FunctionCodec(lambda v: {"S": v.name}, decode)


@dataclass(frozen=True)
class ItemField[T]:
    name: str
    codec: AttributeCodec[T]
    default: T | None = None

    def read(self, item: Item) -> T | None:
        raw = item.get(self.name)
        if raw is None:
            return self.default
        value = self.codec.from_attribute(raw)
        return self.default if value is None else value

    def write(self, item: MutableItem, value: T | None) -> MutableItem:
        if value is None:
            return item.remove(self.name)
        return item.set_attribute(self.name, self.codec.to_attribute(value))


class ItemContainer:
    """Base for typed wrappers around a read-only item."""

    def __init__(self, item: Item) -> None:
        self.item = item

    @property
    def pk(self) -> str:
        return self.item.pk

    @property
    def sk(self) -> str | None:
        return self.item.sk

    def read[T](self, field: ItemField[T]) -> T | None:
        return field.read(self.item)


class MutableItemContainer(ItemContainer):
    item: MutableItem

    def __init__(self, item: MutableItem) -> None:
        super().__init__(item)

    def write[T](self, field: ItemField[T], value: T | None) -> MutableItemContainer:
        field.write(self.item, value)
        return self

    def save(self) -> Item:
        return self.item.save()
