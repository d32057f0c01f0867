from __future__ import annotations

import base64
import json
from typing import Any

import pytest

from dynaitem_py import ValidationError
from dynaitem_py.streams import key_rule, key_rule_json, parse_stream_event, parse_stream_record
from dynaitem_py.testkit import fake_session


def _record(**dynamodb: Any) -> dict[str, Any]:
    return {"eventName": "MODIFY", "dynamodb": {"SequenceNumber": "100", **dynamodb}}


KEYS = {"pk": {"S": "person"}, "sk": {"S": "1"}}


def test_parse_stream_record_decodes_images() -> None:
    blob = base64.b64encode(b"raw").decode("ascii")
    record = parse_stream_record(
        _record(
            Keys=KEYS,
            OldImage={**KEYS, "name": {"S": "Jon"}, "data": {"B": blob}},
            NewImage={**KEYS, "name": {"S": "Jonathan"}, "data": {"B": blob}, "age": {"N": "30"}},
        )
    )

    assert record.event_name == "MODIFY"
    assert record.sequence_number == "100"
    assert record.keys == KEYS
    assert record.old_image is not None
    assert record.old_image["data"] == {"B": b"raw"}
    assert record.changed_attributes() == ["age", "name"]
    assert record.value_pair("name") == ({"S": "Jon"}, {"S": "Jonathan"})
    assert record.value_pair("age") == (None, {"N": "30"})


def test_stream_images_answer_present_attributes_without_fetching() -> None:
    session, client = fake_session()
    record = parse_stream_record(_record(Keys=KEYS, NewImage={"name": {"S": "Jon"}}))

    new = record.new_item(session)
    assert new is not None
    assert new.key == KEYS
    assert new.get_string("name") == "Jon"
    assert record.old_item(session) is None
    assert client.calls == []


def test_stream_items_fetch_leniently_for_absent_attributes() -> None:
    session, client = fake_session()
    record = parse_stream_record(_record(Keys=KEYS, NewImage={"name": {"S": "Jon"}}))

    client.expect("get_item", {"Key": KEYS}, response={"Item": {**KEYS, "name": {"S": "Jon"}, "age": {"N": "30"}}})
    live = record.new_item(session)
    assert live is not None
    assert live.get_int("age") == 30
    assert live.loaded is True

    client.expect("get_item", {"Key": KEYS}, response={})
    gone = record.new_item(session)
    assert gone is not None
    assert gone.get("age") is None
    assert gone.get_string("name") == "Jon"
    client.assert_no_pending()


def test_insert_and_remove_records() -> None:
    insert = parse_stream_record({"eventName": "INSERT", "dynamodb": {"Keys": KEYS, "NewImage": KEYS}})
    assert insert.old_image is None
    assert insert.changed_attributes() == ["pk", "sk"]

    remove = parse_stream_record({"eventName": "REMOVE", "dynamodb": {"Keys": KEYS, "OldImage": KEYS}})
    assert remove.new_image is None
    assert remove.sequence_number is None


def test_parse_unwraps_pipes_events() -> None:
    record = parse_stream_record({"source": "pipes", "detail": _record(Keys=KEYS)})
    assert record.keys == KEYS
    assert record.event_name == "MODIFY"


def test_parse_stream_event() -> None:
    records = parse_stream_event({"Records": [_record(Keys=KEYS), _record(Keys={"pk": {"S": "other"}})]})
    assert [r.keys["pk"] for r in records] == [{"S": "person"}, {"S": "other"}]

    with pytest.raises(ValidationError, match="Records must be a list"):
        parse_stream_event({})


@pytest.mark.parametrize(
    ("record", "match"),
    [
        ("not-a-map", "record must be a map"),
        ({"dynamodb": "nope"}, "record.dynamodb must be a map"),
        ({"dynamodb": {}}, "Keys is required"),
        ({"dynamodb": {"Keys": {}}}, "Keys is required"),
        ({"dynamodb": {"Keys": KEYS, "NewImage": "nope"}}, "new image must be a map"),
        ({"dynamodb": {"Keys": {"pk": {"S": "a", "N": "1"}}}}, ""),
    ],
)
def test_parse_stream_record_validation(record: Any, match: str) -> None:
    with pytest.raises(ValidationError, match=match):
        parse_stream_record(record)


def test_key_rules() -> None:
    assert key_rule("pk", "person") == {"dynamodb": {"Keys": {"pk": {"S": ["person"]}}}}
    assert key_rule("pk", "person#", prefix=True) == {"dynamodb": {"Keys": {"pk": {"S": [{"prefix": "person#"}]}}}}
    assert json.loads(key_rule_json("pk", "x")) == key_rule("pk", "x")
    assert key_rule_json("pk", "x") == '{"dynamodb":{"Keys":{"pk":{"S":["x"]}}}}'

    with pytest.raises(ValidationError, match="key_name"):
        key_rule("", "x")
