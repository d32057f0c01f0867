from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from typing import Any

from botocore.config import Config
from botocore.exceptions import ClientError

from . import attributes as av
from .attributes import AttributeMap, AttributeValue
from .aws_errors import error_message, is_condition_failure
from .config import IndexDefinition, TableConfig
from .errors import BatchRetryExceededError, ConditionFailedError, DuplicateItemError, NotFoundError, ValidationError
from .expressions import alias_path
from .item import Item
from .mutable_item import MutableItem
from .query import Query, parallel_scan
from .runtime import AwsCallMetric, MeteredClient, create_dynamodb_client
from .transaction import Transaction
from .updater import ItemUpdater

logger = logging.getLogger(__name__)

BATCH_GET_LIMIT = 100
BATCH_WRITE_LIMIT = 25

type KeyTuple = tuple[str, str | None]


def _backoff_seconds(attempt: int) -> float:
    seconds = 0.05 * (2.0 ** (attempt - 1))
    if seconds > 1.0:
        return 1.0
    return seconds


def _chunked[T](items: Sequence[T], size: int) -> Sequence[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [items[i : i + size] for i in range(0, len(items), size)]


class Session(ItemUpdater):
    """Entry point bound to one table: reads, queries and direct writes.

    The boto3 client is built on first use unless one is injected.
    """

    def __init__(
        self,
        config: TableConfig,
        *,
        client: Any | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        boto_config: Config | None = None,
        metrics: Callable[[AwsCallMetric], None] | None = None,
    ) -> None:
        self._config = config
        self._region = region
        self._endpoint_url = endpoint_url
        self._boto_config = boto_config
        self._metrics = metrics
        if client is not None and metrics is not None:
            client = MeteredClient(client, metrics)
        self._client = client
        self._client_lock = threading.Lock()
        self._indexes: dict[str, IndexDefinition] = {idx.name: idx for idx in config.indexes}

    @property
    def session(self) -> Session:
        return self

    @property
    def config(self) -> TableConfig:
        return self._config

    @property
    def client(self) -> Any:
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = create_dynamodb_client(
                        region=self._region,
                        endpoint_url=self._endpoint_url,
                        config=self._boto_config,
                        metrics=self._metrics,
                    )
        return self._client

    def register_index(self, name: str, pk: str, sk: str | None = None) -> IndexDefinition:
        definition = IndexDefinition(name=name, pk=pk, sk=sk)
        existing = self._indexes.get(name)
        if existing is not None and existing != definition:
            raise ValidationError(f"index already registered with a different schema: {name}")
        self._indexes[name] = definition
        return definition

    def index(self, name: str) -> IndexDefinition:
        try:
            return self._indexes[name]
        except KeyError:
            raise ValidationError(f"unknown index: {name}") from None

    def key_map(self, pk: str, sk: str | None = None) -> AttributeMap:
        return av.key_map(self._config.pk_name, self._config.sk_name, pk, sk)

    def facade(self, attributes: Mapping[str, AttributeValue]) -> Item:
        """A loaded item over caller-supplied attributes; never reads the table."""
        return Item(self, attributes)

    def unloaded(self, pk: str, sk: str | None = None, *, fail_on_loading: bool = True) -> Item:
        return Item(self, self.key_map(pk, sk), loaded=False, fail_on_loading=fail_on_loading)

    def _projection(self, paths: Sequence[str]) -> tuple[str, dict[str, str]]:
        required = [self._config.pk_name] + ([self._config.sk_name] if self._config.sk_name else [])
        names: dict[str, str] = {}
        refs: list[str] = []
        counter = 0

        def next_alias() -> str:
            nonlocal counter
            counter += 1
            return f"#p{counter}"

        for path in dict.fromkeys([*paths, *required]):
            expr, path_names = alias_path(path, next_alias)
            names.update(path_names)
            refs.append(expr)
        return ", ".join(refs), names

    def get_or_none(
        self,
        pk: str,
        sk: str | None = None,
        *,
        consistent: bool = False,
        attributes: Sequence[str] | None = None,
    ) -> Item | None:
        req: dict[str, Any] = {"TableName": self._config.table_name, "Key": self.key_map(pk, sk)}
        if consistent:
            req["ConsistentRead"] = True
        if attributes:
            req["ProjectionExpression"], req["ExpressionAttributeNames"] = self._projection(attributes)

        logger.debug("get_item table=%s pk=%s sk=%s", self._config.table_name, pk, sk)
        resp = self.client.get_item(**req)
        row = resp.get("Item")
        if not row:
            return None
        return Item(self, row)

    def get(
        self,
        pk: str,
        sk: str | None = None,
        *,
        consistent: bool = False,
        attributes: Sequence[str] | None = None,
    ) -> Item:
        item = self.get_or_none(pk, sk, consistent=consistent, attributes=attributes)
        if item is None:
            raise NotFoundError(f"item not found: {pk}:{sk}" if sk is not None else f"item not found: {pk}")
        return item

    def get_as[T](self, pk: str, sk: str | None, factory: Callable[[Item], T]) -> T:
        return factory(self.get(pk, sk))

    def _normalize_key(self, key: str | KeyTuple) -> KeyTuple:
        if isinstance(key, str):
            return key, None
        if not isinstance(key, tuple) or len(key) != 2:
            raise ValidationError("expected key tuple (pk, sk)")
        return key

    def get_all(
        self,
        keys: Iterable[str | KeyTuple],
        *,
        consistent: bool = False,
        max_retries: int = 5,
        sleep: Callable[[float], None] | None = time.sleep,
    ) -> list[Item]:
        """Read many rows by key; missing rows are skipped and order is not kept."""
        if max_retries < 0:
            raise ValidationError("max_retries must be >= 0")

        normalized = list(dict.fromkeys(self._normalize_key(key) for key in keys))
        table = self._config.table_name
        out: list[Item] = []
        for chunk in _chunked(normalized, BATCH_GET_LIMIT):
            pending_keys: list[AttributeMap] = [self.key_map(pk, sk) for pk, sk in chunk]
            attempts = 0

            while pending_keys:
                request: dict[str, Any] = {"Keys": pending_keys}
                if consistent:
                    request["ConsistentRead"] = True
                logger.debug("batch_get_item table=%s keys=%d", table, len(pending_keys))
                resp = self.client.batch_get_item(RequestItems={table: request})

                for row in resp.get("Responses", {}).get(table, []):
                    out.append(Item(self, row))

                pending_keys = resp.get("UnprocessedKeys", {}).get(table, {}).get("Keys") or []
                if pending_keys:
                    if attempts >= max_retries:
                        raise BatchRetryExceededError(operation="batch_get", unprocessed_count=len(pending_keys))
                    attempts += 1
                    logger.debug("batch_get_item unprocessed=%d attempt=%d", len(pending_keys), attempts)
                    if sleep is not None:
                        sleep(_backoff_seconds(attempts))

        return out

    def query(self, pk: str) -> Query:
        return Query(self, pk)

    def query_index(self, index_name: str, pk: str) -> Query:
        return Query(self, pk).index(index_name)

    def scan(self) -> Query:
        return Query(self)

    def parallel_scan(
        self,
        segments: int,
        segment_numbers: Sequence[int] | None = None,
        configure: Callable[[Query], Any] | None = None,
    ) -> Iterator[Item]:
        return parallel_scan(self, segments, segment_numbers, configure)

    def _batch_delete(
        self,
        keys: Sequence[AttributeMap],
        *,
        max_retries: int,
        sleep: Callable[[float], None] | None,
    ) -> None:
        table = self._config.table_name
        pending: list[dict[str, Any]] = [{"DeleteRequest": {"Key": key}} for key in keys]
        attempts = 0
        while pending:
            logger.debug("batch_write_item table=%s deletes=%d", table, len(pending))
            resp = self.client.batch_write_item(RequestItems={table: pending})
            pending = resp.get("UnprocessedItems", {}).get(table, []) or []
            if pending:
                if attempts >= max_retries:
                    raise BatchRetryExceededError(operation="batch_write", unprocessed_count=len(pending))
                attempts += 1
                if sleep is not None:
                    sleep(_backoff_seconds(attempts))

    def query_delete(
        self,
        query: Query,
        *,
        max_retries: int = 5,
        sleep: Callable[[float], None] | None = time.sleep,
    ) -> int:
        """Delete every row the query returns; not atomic with the query."""
        if max_retries < 0:
            raise ValidationError("max_retries must be >= 0")

        deleted = 0
        buffer: dict[tuple[str, str | None], AttributeMap] = {}
        for item in query.execute():
            buffer[(item.pk, item.sk)] = item.key
            if len(buffer) == BATCH_WRITE_LIMIT:
                self._batch_delete(list(buffer.values()), max_retries=max_retries, sleep=sleep)
                deleted += len(buffer)
                buffer.clear()
        if buffer:
            self._batch_delete(list(buffer.values()), max_retries=max_retries, sleep=sleep)
            deleted += len(buffer)
        return deleted

    def transaction(self) -> Transaction:
        return Transaction(self)

    def put_attributes(self, pk: str, sk: str | None, attributes: Mapping[str, AttributeValue]) -> Item:
        for value in attributes.values():
            av.validate_attribute_value(value)
        row = {**attributes, **self.key_map(pk, sk)}
        logger.debug("put_item table=%s pk=%s sk=%s", self._config.table_name, pk, sk)
        self.client.put_item(TableName=self._config.table_name, Item=row)
        return self.facade(row)

    def _apply_save(self, item: MutableItem) -> Item:
        if item.is_full_write:
            return self._put(item)
        return self._update(item)

    def _put(self, item: MutableItem) -> Item:
        req = item.build_put_request()
        logger.debug("put_item table=%s pk=%s sk=%s", req["TableName"], item.pk, item.sk)
        try:
            resp = self.client.put_item(**req)
        except ClientError as err:
            if is_condition_failure(err):
                if item.do_not_overwrite:
                    raise DuplicateItemError(item.pk, item.sk) from err
                raise ConditionFailedError(error_message(err) or "condition failed") from err
            raise

        old = resp.get("Attributes")
        if item.return_values == "ALL_OLD" and old:
            return self.facade(old)
        return self.facade(req["Item"])

    def _update(self, item: MutableItem) -> Item:
        if not item.has_updates:
            current = self.get_or_none(item.pk, item.sk)
            return current if current is not None else self.facade(item.attributes)

        req = item.build_update_request()
        logger.debug("update_item table=%s pk=%s sk=%s", req["TableName"], item.pk, item.sk)
        try:
            resp = self.client.update_item(**req)
        except ClientError as err:
            if is_condition_failure(err):
                raise ConditionFailedError(error_message(err) or "condition failed") from err
            raise

        attrs = resp.get("Attributes")
        if not attrs:
            return self.unloaded(item.pk, item.sk)
        if item.return_values in {"ALL_NEW", "ALL_OLD"}:
            return self.facade(attrs)
        return Item(self, {**attrs, **item.key}, loaded=False)

    def _apply_delete(self, item: MutableItem) -> Item | None:
        req = item.build_delete_request()
        req["ReturnValues"] = "ALL_OLD"
        logger.debug("delete_item table=%s pk=%s sk=%s", req["TableName"], item.pk, item.sk)
        try:
            resp = self.client.delete_item(**req)
        except ClientError as err:
            if is_condition_failure(err):
                raise ConditionFailedError(error_message(err) or "condition failed") from err
            raise

        old = resp.get("Attributes")
        return self.facade(old) if old else None

    def commit(self) -> None:
        """Writes through a session are applied immediately."""
