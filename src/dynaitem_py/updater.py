from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from .attributes import AttributeValue
from .item import Item
from .mutable_item import MutableItem

if TYPE_CHECKING:
    from .session import Session

type Mutator = Callable[[MutableItem], Any]


class ItemUpdater(ABC):
    """Write capability shared by ``Session`` and ``Transaction``.

    Builders are seeded with the key and routed back here on ``save()``;
    subclasses decide whether a write is applied now or queued.
    """

    @property
    @abstractmethod
    def session(self) -> Session: ...

    def _seed(self, pk: str, sk: str | None) -> MutableItem:
        return MutableItem(self.session, self.session.key_map(pk, sk), updater=self)

    def put_builder(self, pk: str, sk: str | None = None) -> MutableItem:
        item = self._seed(pk, sk)
        item.do_not_overwrite = True
        return item

    def put(self, pk: str, sk: str | None = None, mutator: Mutator | None = None) -> Item:
        """Create a row; fails with ``DuplicateItemError`` when the key exists."""
        item = self.put_builder(pk, sk)
        if mutator is not None:
            mutator(item)
        return item.save()

    def update_builder(self, pk: str, sk: str | None = None) -> MutableItem:
        return self._seed(pk, sk)

    def update(self, pk: str, sk: str | None = None, mutator: Mutator | None = None) -> Item:
        item = self.update_builder(pk, sk)
        if mutator is not None:
            mutator(item)
        return item.save()

    def update_item(self, item: Item, mutator: Mutator | None = None) -> Item:
        return self.update(item.pk, item.sk, mutator)

    def delete(self, pk: str, sk: str | None = None, mutator: Mutator | None = None) -> Item | None:
        item = self._seed(pk, sk)
        if mutator is not None:
            mutator(item)
        return self._apply_delete(item)

    @abstractmethod
    def put_attributes(self, pk: str, sk: str | None, attributes: Mapping[str, AttributeValue]) -> Item:
        """Write a full row, overwriting any existing one."""

    @abstractmethod
    def _apply_save(self, item: MutableItem) -> Item: ...

    @abstractmethod
    def _apply_delete(self, item: MutableItem) -> Item | None: ...

    @abstractmethod
    def commit(self) -> None: ...
