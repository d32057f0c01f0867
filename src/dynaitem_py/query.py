from __future__ import annotations

import base64
import binascii
import json
import logging
import queue
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .attributes import AttributeMap, AttributeValue, attribute_value_of, item_from_json_dict, item_to_json_dict
from .config import IndexDefinition
from .errors import ValidationError
from .expressions import alias_path, merge_names, merge_values, prune
from .item import Item

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

_RESERVED_NAMES = frozenset({"#pk", "#sk"})
_RESERVED_VALUES = frozenset({":pk", ":sk", ":sk1", ":sk2"})


@dataclass(frozen=True)
class SortKeyCondition:
    op: str
    values: tuple[str, ...]

    @staticmethod
    def eq(value: str) -> SortKeyCondition:
        return SortKeyCondition(op="=", values=(value,))

    @staticmethod
    def lt(value: str) -> SortKeyCondition:
        return SortKeyCondition(op="<", values=(value,))

    @staticmethod
    def lte(value: str) -> SortKeyCondition:
        return SortKeyCondition(op="<=", values=(value,))

    @staticmethod
    def gt(value: str) -> SortKeyCondition:
        return SortKeyCondition(op=">", values=(value,))

    @staticmethod
    def gte(value: str) -> SortKeyCondition:
        return SortKeyCondition(op=">=", values=(value,))

    @staticmethod
    def between(low: str, high: str) -> SortKeyCondition:
        return SortKeyCondition(op="between", values=(low, high))

    @staticmethod
    def begins_with(prefix: str) -> SortKeyCondition:
        return SortKeyCondition(op="begins_with", values=(prefix,))

    def expression(self, values: dict[str, AttributeValue]) -> str:
        if self.op in {"=", "<", "<=", ">", ">="}:
            if len(self.values) != 1:
                raise ValidationError("invalid sort key condition")
            values[":sk"] = {"S": self.values[0]}
            return f"#sk {self.op} :sk"
        if self.op == "between":
            if len(self.values) != 2:
                raise ValidationError("invalid sort key condition")
            values[":sk1"] = {"S": self.values[0]}
            values[":sk2"] = {"S": self.values[1]}
            return "#sk BETWEEN :sk1 AND :sk2"
        if self.op == "begins_with":
            if len(self.values) != 1:
                raise ValidationError("invalid sort key condition")
            values[":sk"] = {"S": self.values[0]}
            return "begins_with(#sk, :sk)"
        raise ValidationError(f"unsupported sort key operator: {self.op}")


@dataclass(frozen=True)
class Cursor:
    last_key: AttributeMap
    index: str | None = None
    sort: str | None = None


def encode_cursor(
    last_key: Mapping[str, AttributeValue] | None,
    *,
    index: str | None = None,
    sort: str | None = None,
) -> str | None:
    if not last_key:
        return None
    payload: dict[str, Any] = {"lastKey": item_to_json_dict(last_key)}
    if index is not None:
        payload["index"] = index
    if sort is not None:
        payload["sort"] = sort
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, sort_keys=True)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> Cursor:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValidationError("pagination token is empty")

    try:
        padding = "=" * (-len(raw) % 4)
        parsed = json.loads(base64.urlsafe_b64decode(raw + padding).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as err:
        raise ValidationError("invalid pagination token") from err
    if not isinstance(parsed, dict) or not isinstance(parsed.get("lastKey"), dict):
        raise ValidationError("invalid pagination token")

    index = parsed.get("index")
    sort = parsed.get("sort")
    return Cursor(
        last_key=item_from_json_dict(parsed["lastKey"]),
        index=index if isinstance(index, str) else None,
        sort=sort if sort in {"ASC", "DESC"} else None,
    )


@dataclass
class QueryResult:
    """Items of one page plus its token, or every page lazily with no token."""

    items: Iterable[Item]
    pagination_token: str | None = None

    def __iter__(self) -> Iterator[Item]:
        return iter(self.items)


class Query:
    """Builder for one query (or scan when built without a partition).

    Configure with the chained methods, then call ``execute()`` once.
    """

    def __init__(self, session: Session, partition: str | None = None) -> None:
        self._session = session
        self._partition = partition
        self._index: IndexDefinition | None = None
        self._forward = True
        self._limit: int | None = None
        self._start_token: str | None = None
        self._load_all = False
        self._consistent = False
        self._projection: list[str] = []
        self._sort: SortKeyCondition | None = None
        self._filters: list[str] = []
        self._names: dict[str, str] = {}
        self._values: dict[str, AttributeValue] = {}
        self._segment: tuple[int, int] | None = None
        self._counter = 0
        self._executed = False

    @property
    def is_scan(self) -> bool:
        return self._partition is None

    def _check_building(self) -> None:
        if self._executed:
            raise ValidationError("query has already been executed")

    def _next_alias(self) -> str:
        self._counter += 1
        while f"#attr{self._counter}" in self._names:
            self._counter += 1
        return f"#attr{self._counter}"

    def reversed(self) -> Query:
        self._check_building()
        self._forward = not self._forward
        return self

    def limit(self, n: int) -> Query:
        self._check_building()
        if n <= 0:
            raise ValidationError("limit must be > 0")
        self._limit = n
        return self

    def start_from(self, token: str | None) -> Query:
        self._check_building()
        self._start_token = token
        return self

    def load_all(self) -> Query:
        self._check_building()
        self._load_all = True
        return self

    def consistent(self) -> Query:
        self._check_building()
        self._consistent = True
        return self

    def attributes(self, *paths: str) -> Query:
        self._check_building()
        self._projection.extend(paths)
        return self

    def index(self, name: str, pk_name: str | None = None, sk_name: str | None = None) -> Query:
        self._check_building()
        if pk_name is None:
            self._index = self._session.index(name)
        else:
            self._index = IndexDefinition(name=name, pk=pk_name, sk=sk_name)
        return self

    def sort_key(self, condition: SortKeyCondition) -> Query:
        self._check_building()
        self._sort = condition
        return self

    def name_ref(self, path: str) -> str:
        """Alias a dotted path for use in a filter expression."""
        self._check_building()
        expr, names = alias_path(path, self._next_alias)
        self._names.update(names)
        return expr

    def filter(
        self,
        expression: str,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> Query:
        """Add a filter; several filters are joined with AND."""
        self._check_building()
        if not expression:
            raise ValidationError("filter expression is required")
        for alias in names or {}:
            if alias in _RESERVED_NAMES:
                raise ValidationError(f"expression attribute name collision: {alias}")
        for alias in values or {}:
            if alias in _RESERVED_VALUES:
                raise ValidationError(f"expression attribute value collision: {alias}")
        merge_names(self._names, names or {})
        merge_values(self._values, {k: attribute_value_of(v) for k, v in (values or {}).items()})
        self._filters.append(expression)
        return self

    def segment(self, index: int, total: int) -> Query:
        self._check_building()
        if not self.is_scan:
            raise ValidationError("segments apply to scans only")
        if total <= 0 or not 0 <= index < total:
            raise ValidationError(f"invalid segment {index} of {total}")
        self._segment = (index, total)
        return self

    def _key_names(self) -> tuple[str, str | None]:
        if self._index is not None:
            return self._index.pk, self._index.sk
        config = self._session.config
        return config.pk_name, config.sk_name

    def _projection_expression(self, names: dict[str, str]) -> str | None:
        if not self._projection:
            return None
        config = self._session.config
        required = [config.pk_name] + ([config.sk_name] if config.sk_name else [])
        paths = list(dict.fromkeys([*self._projection, *required]))
        counter = self._counter

        def next_alias() -> str:
            nonlocal counter
            counter += 1
            while f"#attr{counter}" in names:
                counter += 1
            return f"#attr{counter}"

        refs: list[str] = []
        for path in paths:
            expr, path_names = alias_path(path, next_alias)
            merge_names(names, path_names)
            refs.append(expr)
        return ", ".join(refs)

    def build_request(self, start_key: Mapping[str, AttributeValue] | None = None) -> dict[str, Any]:
        names = dict(self._names)
        values = dict(self._values)
        req: dict[str, Any] = {"TableName": self._session.config.table_name}
        if self._index is not None:
            req["IndexName"] = self._index.name

        pk_name, sk_name = self._key_names()
        key_expr: str | None = None
        if self._partition is not None:
            names["#pk"] = pk_name
            values[":pk"] = {"S": self._partition}
            key_expr = "#pk = :pk"
            if self._sort is not None:
                if sk_name is None:
                    raise ValidationError("table/index does not define a sort key")
                names["#sk"] = sk_name
                key_expr = f"{key_expr} AND {self._sort.expression(values)}"
            req["KeyConditionExpression"] = key_expr
            req["ScanIndexForward"] = self._forward
        elif self._sort is not None:
            raise ValidationError("sort key condition requires a partition key")

        if self._segment is not None:
            req["Segment"], req["TotalSegments"] = self._segment
        if self._consistent:
            req["ConsistentRead"] = True
        if self._limit is not None:
            req["Limit"] = self._limit

        projection = self._projection_expression(names)
        if projection is not None:
            req["ProjectionExpression"] = projection
        filter_expr: str | None = None
        if len(self._filters) == 1:
            filter_expr = self._filters[0]
        elif self._filters:
            filter_expr = " AND ".join(f"({f})" for f in self._filters)
        if filter_expr is not None:
            req["FilterExpression"] = filter_expr

        names, values = prune(names, values, key_expr, projection, filter_expr)
        if names:
            req["ExpressionAttributeNames"] = names
        if values:
            req["ExpressionAttributeValues"] = values
        if start_key:
            req["ExclusiveStartKey"] = dict(start_key)
        return req

    def _token_sort(self) -> str | None:
        if self.is_scan:
            return None
        return "ASC" if self._forward else "DESC"

    def _start_key(self) -> AttributeMap | None:
        if self._start_token is None:
            return None
        decoded = decode_cursor(self._start_token)
        index_name = self._index.name if self._index is not None else None
        if decoded.index != index_name:
            raise ValidationError("pagination token index does not match query")
        if decoded.sort is not None and decoded.sort != self._token_sort():
            raise ValidationError("pagination token sort does not match query")
        return decoded.last_key

    def _fetch_page(
        self, start_key: Mapping[str, AttributeValue] | None
    ) -> tuple[list[Item], AttributeMap | None]:
        req = self.build_request(start_key)
        client = self._session.client
        if self.is_scan:
            logger.debug("scan table=%s index=%s segment=%s", req["TableName"], req.get("IndexName"), self._segment)
            resp = client.scan(**req)
        else:
            logger.debug("query table=%s index=%s pk=%s", req["TableName"], req.get("IndexName"), self._partition)
            resp = client.query(**req)
        items = [Item(self._session, row) for row in resp.get("Items", [])]
        return items, resp.get("LastEvaluatedKey") or None

    def _remaining(self, first: list[Item], last_key: AttributeMap | None) -> Iterator[Item]:
        yield from first
        while last_key:
            items, last_key = self._fetch_page(last_key)
            yield from items

    def execute(self) -> QueryResult:
        self._check_building()
        self._executed = True

        items, last_key = self._fetch_page(self._start_key())
        if self._load_all:
            return QueryResult(items=self._remaining(items, last_key))

        index_name = self._index.name if self._index is not None else None
        return QueryResult(
            items=items,
            pagination_token=encode_cursor(last_key, index=index_name, sort=self._token_sort()),
        )


class _SegmentFailure:
    def __init__(self, error: BaseException) -> None:
        self.error = error


_SEGMENT_DONE = object()


def parallel_scan(
    session: Session,
    segments: int,
    segment_numbers: Sequence[int] | None = None,
    configure: Callable[[Query], Any] | None = None,
) -> Iterator[Item]:
    """Scan ``segments`` segments concurrently and merge them into one stream.

    Items arrive in no particular order across segments. A failure in any
    segment is raised from the iterator.
    """
    if segments <= 0:
        raise ValidationError("segments must be > 0")
    numbers = list(range(segments)) if segment_numbers is None else list(segment_numbers)
    for n in numbers:
        if not 0 <= n < segments:
            raise ValidationError(f"invalid segment {n} of {segments}")

    queries: list[Query] = []
    for n in numbers:
        query = session.scan().segment(n, segments).load_all()
        if configure is not None:
            configure(query)
        queries.append(query)

    return _merge_segments(queries)


def _merge_segments(queries: list[Query]) -> Iterator[Item]:
    if not queries:
        return
    results: queue.Queue[Any] = queue.Queue()
    stop = threading.Event()

    def run(query: Query) -> None:
        try:
            for item in query.execute():
                if stop.is_set():
                    return
                results.put(item)
        except Exception as err:
            results.put(_SegmentFailure(err))
        finally:
            results.put(_SEGMENT_DONE)

    executor = ThreadPoolExecutor(max_workers=len(queries))
    try:
        for query in queries:
            executor.submit(run, query)
        pending = len(queries)
        while pending:
            entry = results.get()
            if entry is _SEGMENT_DONE:
                pending -= 1
            elif isinstance(entry, _SegmentFailure):
                raise entry.error
            else:
                yield entry
    finally:
        stop.set()
        executor.shutdown(wait=False, cancel_futures=True)
