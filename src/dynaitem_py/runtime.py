from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, cast

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .aws_errors import error_code

logger = logging.getLogger(__name__)

# Client defaults inside AWS Lambda.
LAMBDA_CONNECT_TIMEOUT = 1.0
LAMBDA_READ_TIMEOUT = 3.0
LAMBDA_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class AwsCallMetric:
    """One DynamoDB call: the operation, the tables it touched and its outcome."""

    operation: str
    tables: tuple[str, ...]
    seconds: float
    ok: bool
    error_code: str | None = None


def is_lambda_environment(environ: Mapping[str, str] = os.environ) -> bool:
    return bool(
        environ.get("AWS_LAMBDA_FUNCTION_NAME") or "AWS_Lambda" in (environ.get("AWS_EXECUTION_ENV") or "")
    )


def default_client_config(environ: Mapping[str, str] = os.environ) -> Config | None:
    if not is_lambda_environment(environ):
        return None
    return Config(
        connect_timeout=LAMBDA_CONNECT_TIMEOUT,
        read_timeout=LAMBDA_READ_TIMEOUT,
        retries={"max_attempts": LAMBDA_MAX_ATTEMPTS, "mode": "adaptive"},
    )


def _tables(request: Mapping[str, Any]) -> tuple[str, ...]:
    if "TableName" in request:
        return (request["TableName"],)
    if "RequestItems" in request:
        return tuple(request["RequestItems"])
    names: list[str] = []
    for item in request.get("TransactItems", ()):
        for entry in item.values():
            if entry.get("TableName") not in names:
                names.append(entry.get("TableName"))
    return tuple(names)


class MeteredClient:
    """Wraps a DynamoDB client, reporting every call to ``on_call`` and the debug log."""

    def __init__(self, client: Any, on_call: Callable[[AwsCallMetric], None]) -> None:
        self._client = client
        self._on_call = on_call

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._client, name)
        if name.startswith("_") or not callable(attr):
            return attr

        def metered(**request: Any) -> Any:
            tables = _tables(request)
            start = time.monotonic()
            code: str | None = None
            try:
                return attr(**request)
            except ClientError as err:
                code = error_code(err) or "ClientError"
                raise
            except Exception as err:
                code = type(err).__name__
                raise
            finally:
                seconds = time.monotonic() - start
                logger.debug("dynamodb %s tables=%s took %.3fs error=%s", name, ",".join(tables), seconds, code)
                self._on_call(
                    AwsCallMetric(operation=name, tables=tables, seconds=seconds, ok=code is None, error_code=code)
                )

        return metered


def create_dynamodb_client(
    *,
    region: str | None = None,
    endpoint_url: str | None = None,
    config: Config | None = None,
    session: Any | None = None,
    metrics: Callable[[AwsCallMetric], None] | None = None,
) -> Any:
    if config is None:
        config = default_client_config()

    sess = session or boto3.session.Session(region_name=region)
    logger.debug("creating dynamodb client region=%s endpoint=%s", region, endpoint_url)
    client = cast(Any, sess).client("dynamodb", region_name=region, endpoint_url=endpoint_url, config=config)
    if metrics is not None:
        client = MeteredClient(client, metrics)
    return client
