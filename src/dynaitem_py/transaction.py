from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import TracebackType
from typing import TYPE_CHECKING, Any, Literal

from botocore.exceptions import ClientError

from .attributes import AttributeValue, attribute_value_of, validate_attribute_value
from .aws_errors import map_transaction_error
from .errors import ValidationError
from .expressions import merge_names, merge_values, prune
from .item import Item
from .mutable_item import MutableItem
from .updater import ItemUpdater

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

MAX_TRANSACTION_ENTRIES = 100

type EntryKind = Literal["Put", "Update", "Delete", "ConditionCheck"]


@dataclass(frozen=True)
class TransactEntry:
    kind: EntryKind
    request: dict[str, Any]
    guard: tuple[str, str | None] | None = None

    def to_transact_item(self) -> dict[str, Any]:
        return {self.kind: self.request}


class Transaction(ItemUpdater):
    """Collects writes and applies them in one ``TransactWriteItems`` call.

    Each write is resolved to its request when added and answers with an
    unloaded item for the affected key. Use as a context manager to commit on
    a clean exit; an exception inside the block discards the entries.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._entries: list[TransactEntry] = []
        self._committed = False

    @property
    def session(self) -> Session:
        return self._session

    @property
    def committed(self) -> bool:
        return self._committed

    @property
    def entries(self) -> list[TransactEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def _append(self, entry: TransactEntry) -> None:
        if self._committed:
            raise ValidationError("transaction has already been committed")
        self._entries.append(entry)

    def _unloaded(self, item: Item) -> Item:
        return self._session.unloaded(item.pk, item.sk)

    def _apply_save(self, item: MutableItem) -> Item:
        if item.is_full_write:
            guard = (item.pk, item.sk) if item.do_not_overwrite else None
            self._append(TransactEntry("Put", item.build_put_request(transactional=True), guard))
        elif item.has_updates:
            self._append(TransactEntry("Update", item.build_update_request(transactional=True)))
        return self._unloaded(item)

    def _apply_delete(self, item: MutableItem) -> Item:
        self._append(TransactEntry("Delete", item.build_delete_request()))
        return self._unloaded(item)

    def put_attributes(self, pk: str, sk: str | None, attributes: Mapping[str, AttributeValue]) -> Item:
        for value in attributes.values():
            validate_attribute_value(value)
        key = self._session.key_map(pk, sk)
        request = {"TableName": self._session.config.table_name, "Item": {**attributes, **key}}
        self._append(TransactEntry("Put", request))
        return self._session.unloaded(pk, sk)

    def condition(
        self,
        pk: str,
        sk: str | None,
        expression: str,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> Item:
        """Gate the transaction on a condition over an item it does not write."""
        if not expression:
            raise ValidationError("condition expression is required")
        bound_names: dict[str, str] = {}
        bound_values: dict[str, AttributeValue] = {}
        merge_names(bound_names, names or {})
        merge_values(bound_values, {k: attribute_value_of(v) for k, v in (values or {}).items()})
        bound_names, bound_values = prune(bound_names, bound_values, expression)

        request: dict[str, Any] = {
            "TableName": self._session.config.table_name,
            "Key": self._session.key_map(pk, sk),
            "ConditionExpression": expression,
        }
        if bound_names:
            request["ExpressionAttributeNames"] = bound_names
        if bound_values:
            request["ExpressionAttributeValues"] = bound_values
        self._append(TransactEntry("ConditionCheck", request))
        return self._session.unloaded(pk, sk)

    def commit(self) -> None:
        if self._committed:
            raise ValidationError("transaction has already been committed")
        self._committed = True
        if not self._entries:
            return
        if len(self._entries) > MAX_TRANSACTION_ENTRIES:
            raise ValidationError(f"a transaction supports at most {MAX_TRANSACTION_ENTRIES} entries")

        logger.debug("committing transaction with %d entries", len(self._entries))
        try:
            self._session.client.transact_write_items(
                TransactItems=[entry.to_transact_item() for entry in self._entries]
            )
        except ClientError as err:
            mapped = map_transaction_error(err, [entry.guard for entry in self._entries])
            if mapped is not None:
                raise mapped from err
            raise

    def discard(self) -> None:
        self._entries.clear()
        self._committed = True

    def close(self) -> None:
        if not self._committed:
            self.commit()

    def __enter__(self) -> Transaction:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.close()
        else:
            self.discard()
