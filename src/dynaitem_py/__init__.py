from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .attributes import AttributeMap, AttributeValue, attribute_value, find_differences, to_python
from .config import IndexDefinition, TableConfig
from .errors import (
    BatchRetryExceededError,
    ConditionFailedError,
    DuplicateItemError,
    DynaitemError,
    NotFoundError,
    ValidationError,
)
from .item import Item
from .mutable_item import MutableItem
from .query import Query, QueryResult, SortKeyCondition
from .runtime import (
    AwsCallMetric,
    MeteredClient,
    create_dynamodb_client,
    default_client_config,
    is_lambda_environment,
)
from .session import Session
from .transaction import Transaction
from .updater import ItemUpdater

if TYPE_CHECKING:
    from .codecs import (
        BOOL,
        DATE,
        DECIMAL,
        INSTANT,
        INT,
        JSON,
        STRING,
        STRING_SET,
        AttributeCodec,
        ItemContainer,
        ItemField,
        MutableItemContainer,
        enum_codec,
    )
    from .streams import StreamRecord, key_rule, key_rule_json, parse_stream_event, parse_stream_record


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name in {
        "AttributeCodec",
        "BOOL",
        "DATE",
        "DECIMAL",
        "INSTANT",
        "INT",
        "ItemContainer",
        "ItemField",
        "JSON",
        "MutableItemContainer",
        "STRING",
        "STRING_SET",
        "enum_codec",
    }:
        from . import codecs

        return getattr(codecs, name)
    if name in {"StreamRecord", "key_rule", "key_rule_json", "parse_stream_event", "parse_stream_record"}:
        from . import streams

        return getattr(streams, name)
    raise AttributeError(name)


__all__ = [
    "AttributeCodec",
    "AttributeMap",
    "AttributeValue",
    "AwsCallMetric",
    "BatchRetryExceededError",
    "BOOL",
    "ConditionFailedError",
    "create_dynamodb_client",
    "default_client_config",
    "DATE",
    "DECIMAL",
    "DuplicateItemError",
    "DynaitemError",
    "INSTANT",
    "INT",
    "IndexDefinition",
    "Item",
    "ItemContainer",
    "ItemField",
    "ItemUpdater",
    "JSON",
    "MeteredClient",
    "MutableItem",
    "MutableItemContainer",
    "NotFoundError",
    "Query",
    "QueryResult",
    "Session",
    "SortKeyCondition",
    "STRING",
    "STRING_SET",
    "StreamRecord",
    "TableConfig",
    "Transaction",
    "ValidationError",
    "__repo_version__",
    "__version__",
    "attribute_value",
    "enum_codec",
    "find_differences",
    "is_lambda_environment",
    "key_rule",
    "key_rule_json",
    "parse_stream_event",
    "parse_stream_record",
    "to_python",
]
