from __future__ import annotations

from dynaitem_py import TableConfig
from dynaitem_py.testkit import FakeDynamoDBClient, fake_session, no_sleep


def test_no_sleep_is_noop() -> None:
    no_sleep(0.0)
    no_sleep(1.0)


def test_fake_session_wires_a_fresh_client() -> None:
    session, client = fake_session()
    assert isinstance(client, FakeDynamoDBClient)
    assert session.client is client
    assert session.config.table_name == "items"

    other, other_client = fake_session(TableConfig(table_name="people", sk_name=None))
    assert other.config.sk_name is None
    assert other_client is not client
