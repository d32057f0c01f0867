from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .attributes import AttributeMap, AttributeValue, find_differences, item_from_json_dict
from .errors import ValidationError
from .item import Item

if TYPE_CHECKING:
    from .session import Session


def _decode_image(image: Any, what: str) -> AttributeMap | None:
    if image is None:
        return None
    if not isinstance(image, dict):
        raise ValidationError(f"stream {what} must be a map")
    return item_from_json_dict(image)


@dataclass(frozen=True)
class StreamRecord:
    """One change record with before/after images of a row."""

    event_name: str | None
    keys: AttributeMap
    old_image: AttributeMap | None = None
    new_image: AttributeMap | None = None
    sequence_number: str | None = None

    def _item(self, session: Session, image: AttributeMap | None) -> Item | None:
        if image is None:
            return None
        return Item(session, {**image, **self.keys}, loaded=False, fail_on_loading=False)

    def old_item(self, session: Session) -> Item | None:
        return self._item(session, self.old_image)

    def new_item(self, session: Session) -> Item | None:
        return self._item(session, self.new_image)

    def value_pair(self, name: str) -> tuple[AttributeValue | None, AttributeValue | None]:
        old = (self.old_image or {}).get(name)
        new = (self.new_image or {}).get(name)
        return old, new

    def changed_attributes(self) -> list[str]:
        return find_differences(self.old_image, self.new_image)


def parse_stream_record(record: Any) -> StreamRecord:
    """Parse a Lambda stream record, or the EventBridge Pipes event wrapping one.

    Binary values arrive base64 encoded and are decoded.
    """
    if not isinstance(record, dict):
        raise ValidationError("record must be a map")
    if isinstance(record.get("detail"), dict) and "dynamodb" in record["detail"]:
        record = record["detail"]

    dynamodb = record.get("dynamodb")
    if not isinstance(dynamodb, dict):
        raise ValidationError("record.dynamodb must be a map")

    keys = _decode_image(dynamodb.get("Keys"), "keys")
    if not keys:
        raise ValidationError("record.dynamodb.Keys is required")

    event_name = record.get("eventName")
    sequence = dynamodb.get("SequenceNumber")
    return StreamRecord(
        event_name=event_name if isinstance(event_name, str) else None,
        keys=keys,
        old_image=_decode_image(dynamodb.get("OldImage"), "old image"),
        new_image=_decode_image(dynamodb.get("NewImage"), "new image"),
        sequence_number=sequence if isinstance(sequence, str) else None,
    )


def parse_stream_event(event: Mapping[str, Any]) -> list[StreamRecord]:
    records = event.get("Records")
    if not isinstance(records, list):
        raise ValidationError("event.Records must be a list")
    return [parse_stream_record(record) for record in records]


def key_rule(key_name: str, match: str, *, prefix: bool = False) -> dict[str, Any]:
    """EventBridge pattern selecting stream events by one string key attribute."""
    if not key_name:
        raise ValidationError("key_name is required")
    condition: Any = {"prefix": match} if prefix else match
    return {"dynamodb": {"Keys": {key_name: {"S": [condition]}}}}


def key_rule_json(key_name: str, match: str, *, prefix: bool = False) -> str:
    return json.dumps(key_rule(key_name, match, prefix=prefix), separators=(",", ":"), sort_keys=True)
