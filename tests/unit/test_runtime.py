from __future__ import annotations

import logging
from typing import Any

import pytest
from botocore.exceptions import ClientError

from dynaitem_py.mocks import FakeDynamoDBClient
from dynaitem_py.runtime import (
    AwsCallMetric,
    MeteredClient,
    create_dynamodb_client,
    default_client_config,
    is_lambda_environment,
)
from dynaitem_py.testkit import client_error


def test_is_lambda_environment() -> None:
    assert is_lambda_environment({}) is False
    assert is_lambda_environment({"AWS_LAMBDA_FUNCTION_NAME": "fn"}) is True
    assert is_lambda_environment({"AWS_EXECUTION_ENV": "AWS_Lambda_python3.12"}) is True


def test_default_client_config_only_inside_lambda() -> None:
    assert default_client_config({}) is None

    cfg = default_client_config({"AWS_LAMBDA_FUNCTION_NAME": "fn"})
    assert cfg is not None
    assert cfg.connect_timeout == 1.0
    assert cfg.read_timeout == 3.0
    assert cfg.retries == {"max_attempts": 3, "mode": "adaptive"}


def test_metered_client_records_tables_and_outcome(caplog: pytest.LogCaptureFixture) -> None:
    metrics: list[AwsCallMetric] = []

    client = FakeDynamoDBClient()
    client.expect("put_item", response={})
    client.expect("get_item", error=client_error("ResourceNotFoundException", "no table"))
    client.expect("batch_get_item", error=RuntimeError("boom"))
    client.expect("transact_write_items", response={})
    metered = MeteredClient(client, metrics.append)

    with caplog.at_level(logging.DEBUG, logger="dynaitem_py.runtime"):
        metered.put_item(TableName="t", Item={})
        with pytest.raises(ClientError):
            metered.get_item(TableName="t", Key={})
        with pytest.raises(RuntimeError, match="boom"):
            metered.batch_get_item(RequestItems={"a": {}, "b": {}})
        metered.transact_write_items(
            TransactItems=[{"Put": {"TableName": "a"}}, {"Delete": {"TableName": "a"}}, {"Update": {"TableName": "b"}}]
        )

    assert [(m.operation, m.tables, m.ok, m.error_code) for m in metrics] == [
        ("put_item", ("t",), True, None),
        ("get_item", ("t",), False, "ResourceNotFoundException"),
        ("batch_get_item", ("a", "b"), False, "RuntimeError"),
        ("transact_write_items", ("a", "b"), True, None),
    ]
    assert all(m.seconds >= 0 for m in metrics)
    assert metered.calls is client.calls
    assert "dynamodb get_item tables=t" in caplog.text


class _FakeBotoSession:
    def __init__(self) -> None:
        self.created: list[tuple[str, dict[str, Any]]] = []
        self.clients: list[FakeDynamoDBClient] = []

    def client(self, service_name: str, **kwargs: Any) -> FakeDynamoDBClient:
        self.created.append((service_name, kwargs))
        self.clients.append(FakeDynamoDBClient())
        return self.clients[-1]


def test_create_dynamodb_client_passes_endpoint_and_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AWS_LAMBDA_FUNCTION_NAME", raising=False)
    monkeypatch.delenv("AWS_EXECUTION_ENV", raising=False)
    sess = _FakeBotoSession()

    client = create_dynamodb_client(region="us-east-1", endpoint_url="http://localhost:8000", session=sess)
    assert isinstance(client, FakeDynamoDBClient)
    assert sess.created == [
        ("dynamodb", {"region_name": "us-east-1", "endpoint_url": "http://localhost:8000", "config": None})
    ]


def test_create_dynamodb_client_uses_lambda_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_LAMBDA_FUNCTION_NAME", "fn")
    sess = _FakeBotoSession()
    metrics: list[AwsCallMetric] = []

    client = create_dynamodb_client(session=sess, metrics=metrics.append)
    config = sess.created[0][1]["config"]
    assert config is not None
    assert config.retries["mode"] == "adaptive"

    sess.clients[0].expect("scan", response={})
    client.scan(TableName="t")
    assert [(m.operation, m.tables) for m in metrics] == [("scan", ("t",))]
