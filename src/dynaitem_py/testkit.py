from __future__ import annotations

from .config import TableConfig
from .mocks import ANY, FakeDynamoDBClient, client_error
from .session import Session


def no_sleep(_: float) -> None:
    return None


def fake_session(config: TableConfig | None = None) -> tuple[Session, FakeDynamoDBClient]:
    """A session wired to a fresh fake client, for unit tests."""
    client = FakeDynamoDBClient()
    return Session(config or TableConfig(table_name="items"), client=client), client


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "client_error",
    "fake_session",
    "no_sleep",
]
