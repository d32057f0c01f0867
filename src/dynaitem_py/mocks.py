from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import ClientError


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()

OPERATIONS = frozenset(
    {
        "get_item",
        "put_item",
        "update_item",
        "delete_item",
        "query",
        "scan",
        "batch_get_item",
        "batch_write_item",
        "transact_write_items",
    }
)


def _assert_match(expected: Any, actual: Any, *, path: str) -> None:
    """Partial match: dict keys absent from ``expected`` are not checked."""
    if expected is ANY:
        return

    if isinstance(expected, Mapping):
        if not isinstance(actual, Mapping):
            raise AssertionError(f"{path}: expected map, got {type(actual).__name__}")
        for k, v in expected.items():
            if k not in actual:
                raise AssertionError(f"{path}: missing key {k!r}")
            _assert_match(v, actual[k], path=f"{path}.{k}")
        return

    if isinstance(expected, list):
        if not isinstance(actual, list) or len(expected) != len(actual):
            raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")
        for i, (e, a) in enumerate(zip(expected, actual, strict=True)):
            _assert_match(e, a, path=f"{path}[{i}]")
        return

    if expected != actual:
        raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")


def client_error(
    code: str,
    message: str = "",
    *,
    operation: str = "DynamoDB",
    cancellation_reasons: Sequence[str] = (),
) -> ClientError:
    """Build the ``ClientError`` botocore raises for a failed call."""
    response: dict[str, Any] = {"Error": {"Code": code, "Message": message or code}}
    if cancellation_reasons:
        response["CancellationReasons"] = [{"Code": reason} for reason in cancellation_reasons]
    return ClientError(response, operation)


@dataclass(frozen=True)
class ExpectedRequest:
    method: str
    expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None


class FakeDynamoDBClient:
    """Stand-in for a low-level DynamoDB client driven by queued expectations.

    Each call pops the next expectation, checks the request against it and
    returns its response (or raises its error). Calls are recorded in order.
    """

    def __init__(self) -> None:
        self._expected: list[ExpectedRequest] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        if method not in OPERATIONS:
            raise ValueError(f"unsupported operation: {method}")
        self._expected.append(ExpectedRequest(method=method, expected=expected, response=response, error=error))

    def assert_no_pending(self) -> None:
        if self._expected:
            raise AssertionError(f"pending expected calls: {[e.method for e in self._expected]!r}")

    def requests(self, method: str) -> list[dict[str, Any]]:
        return [req for name, req in self.calls if name == method]

    def _handle(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        self.calls.append((method, dict(req)))
        if not self._expected:
            raise AssertionError(f"unexpected call: {method}")

        call = self._expected.pop(0)
        if call.method != method:
            raise AssertionError(f"expected {call.method}, got {method}")

        if callable(call.expected):
            call.expected(req)
        elif call.expected is not None:
            _assert_match(call.expected, req, path=method)

        if call.error is not None:
            raise call.error
        return dict(call.response or {})

    def __getattr__(self, name: str) -> Callable[..., Mapping[str, Any]]:
        if name not in OPERATIONS:
            raise AttributeError(name)

        def call(**kwargs: Any) -> Mapping[str, Any]:
            return self._handle(name, kwargs)

        return call
