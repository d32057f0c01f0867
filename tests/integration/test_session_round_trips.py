from __future__ import annotations

import pytest

from dynaitem_py import ConditionFailedError, DuplicateItemError, NotFoundError, Session, SortKeyCondition


def test_put_then_get(session: Session) -> None:
    created = session.put("person", "123", lambda m: m.set("name", "Jon").set("address", {"city": "Oslo"}))
    assert created.get_string("name") == "Jon"

    loaded = session.get("person", "123")
    assert loaded.get_string("name") == "Jon"
    assert loaded.get_map("address") == {"city": {"S": "Oslo"}}

    moved = session.update("person", "123", lambda m: m.set("address.city", "Bergen"))
    assert moved.get_map("address") == {"city": {"S": "Bergen"}}


def test_second_put_is_a_duplicate(session: Session) -> None:
    session.put("person", "123", lambda m: m.set("name", "Jon"))
    with pytest.raises(DuplicateItemError):
        session.put("person", "123", lambda m: m.set("name", "Ann"))
    assert session.get("person", "123").get_string("name") == "Jon"


def test_increment_accumulates(session: Session) -> None:
    session.update("person", "123", lambda m: m.increment("visits"))
    out = session.update("person", "123", lambda m: m.increment("visits"))
    assert out.get_int("visits") == 2


def test_update_conditions_and_lists(session: Session) -> None:
    session.put("person", "123", lambda m: m.set("state", "open"))
    out = session.update(
        "person",
        "123",
        lambda m: m.add_to_list("tags", "a").add_to_list("tags", "b").condition_attribute_equals("state", "open"),
    )
    assert out.get_list("tags") == [{"S": "a"}, {"S": "b"}]

    with pytest.raises(ConditionFailedError):
        session.update("person", "123", lambda m: m.set("x", 1).condition_attribute_equals("state", "closed"))


def test_delete_returns_old_row(session: Session) -> None:
    session.put("person", "123", lambda m: m.set("name", "Jon"))
    old = session.delete("person", "123")
    assert old is not None
    assert old.get_string("name") == "Jon"
    with pytest.raises(NotFoundError):
        session.get("person", "123")
    assert session.delete("person", "123") is None


def test_failed_transaction_applies_nothing(session: Session) -> None:
    session.put("person", "1", lambda m: m.set("state", "closed"))

    tx = session.transaction()
    tx.put("person", "2", lambda m: m.set("name", "Ann"))
    tx.condition("person", "1", "#s = :s", {"#s": "state"}, {":s": "open"})
    with pytest.raises(ConditionFailedError):
        tx.commit()
    assert session.get_or_none("person", "2") is None


def test_transaction_commits_all_entries(session: Session) -> None:
    with session.transaction() as tx:
        tx.put("person", "1", lambda m: m.set("name", "Jon"))
        tx.update("person", "2", lambda m: m.increment("visits", 5))

    assert session.get("person", "1").get_string("name") == "Jon"
    assert session.get("person", "2").get_int("visits") == 5

    tx = session.transaction()
    tx.put("person", "1")
    with pytest.raises(DuplicateItemError):
        tx.commit()


def test_paging_matches_load_all(session: Session) -> None:
    for i in range(7):
        session.put_attributes("p", f"{i:02d}", {"n": {"N": str(i)}})
    session.put_attributes("other", "00", {})

    paged: list[str | None] = []
    token: str | None = None
    while True:
        query = session.query("p").limit(3)
        if token is not None:
            query.start_from(token)
        result = query.execute()
        paged.extend(item.sk for item in result)
        token = result.pagination_token
        if token is None:
            break

    everything = [item.sk for item in session.query("p").limit(3).load_all().execute()]
    assert paged == everything == [f"{i:02d}" for i in range(7)]

    newest = session.query("p").reversed().sort_key(SortKeyCondition.gte("05")).load_all().execute()
    assert [item.sk for item in newest] == ["06", "05"]


def test_index_query_and_batch_reads(session: Session) -> None:
    session.put("person", "1", lambda m: m.set("email", "jon@example.com"))
    session.put("person", "2", lambda m: m.set("email", "ann@example.com"))

    found = list(session.query_index("byEmail", "ann@example.com").load_all().execute())
    assert [item.sk for item in found] == ["2"]

    rows = session.get_all([("person", "1"), ("person", "2"), ("person", "3")])
    assert sorted(item.sk or "" for item in rows) == ["1", "2"]


def test_query_delete_removes_matching_rows(session: Session) -> None:
    for i in range(30):
        session.put_attributes("doomed", f"{i:02d}", {})
    session.put_attributes("kept", "00", {})

    assert session.query_delete(session.query("doomed")) == 30
    assert list(session.query("doomed").load_all().execute()) == []
    assert session.get_or_none("kept", "00") is not None
