from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, cast

from . import attributes as av
from .attributes import AttributeMap, AttributeValue
from .errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from .mutable_item import MutableItem
    from .session import Session
    from .updater import ItemUpdater

logger = logging.getLogger(__name__)


class Item:
    """Read view over one row.

    An item built from a store response, or as a facade, is loaded and never
    touches the store. An unloaded item holds only what the caller knew
    (usually the key) and fetches the full row once, the first time an absent
    attribute is read.
    """

    def __init__(
        self,
        session: Session,
        attributes: Mapping[str, AttributeValue],
        *,
        loaded: bool = True,
        fail_on_loading: bool = True,
    ) -> None:
        self._session = session
        self._attributes: AttributeMap = dict(attributes)
        self._loaded = loaded
        self._fail_on_loading = fail_on_loading
        self._lock = threading.Lock()

        config = session.config
        if av.as_string(self._attributes.get(config.pk_name)) is None:
            raise ValidationError(f"item is missing string partition key: {config.pk_name}")
        if config.sk_name is not None and av.as_string(self._attributes.get(config.sk_name)) is None:
            raise ValidationError(f"item is missing string sort key: {config.sk_name}")

    @property
    def session(self) -> Session:
        return self._session

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def fail_on_loading(self) -> bool:
        return self._fail_on_loading

    @property
    def attributes(self) -> AttributeMap:
        """The attributes held right now, without loading."""
        return dict(self._attributes)

    @property
    def pk(self) -> str:
        return cast(str, av.as_string(self._attributes.get(self._session.config.pk_name)))

    @property
    def sk(self) -> str | None:
        sk_name = self._session.config.sk_name
        if sk_name is None:
            return None
        return av.as_string(self._attributes.get(sk_name))

    @property
    def key(self) -> AttributeMap:
        return self._session.key_map(self.pk, self.sk)

    def fetch(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            logger.debug("loading item pk=%s sk=%s", self.pk, self.sk)
            try:
                self._attributes = self._session.get(self.pk, self.sk).attributes
            except NotFoundError:
                if self._fail_on_loading:
                    raise
            self._loaded = True

    def get(self, name: str) -> AttributeValue | None:
        value = self._attributes.get(name)
        if value is None and not self._loaded:
            self.fetch()
            value = self._attributes.get(name)
        return value

    def all_attributes(self) -> AttributeMap:
        self.fetch()
        return dict(self._attributes)

    def to_dict(self) -> dict[str, Any]:
        """Every attribute as a plain Python value, loading first."""
        return {name: av.to_python(value) for name, value in self.all_attributes().items()}

    def get_string(self, name: str) -> str | None:
        return av.as_string(self.get(name))

    def get_int(self, name: str) -> int | None:
        return av.as_int(self.get(name))

    def get_decimal(self, name: str) -> Decimal | None:
        return av.as_number(self.get(name))

    def get_bool(self, name: str) -> bool | None:
        return av.as_bool(self.get(name))

    def get_binary(self, name: str) -> bytes | None:
        return av.as_binary(self.get(name))

    def get_list(self, name: str) -> list[AttributeValue] | None:
        return av.as_list(self.get(name))

    def get_map(self, name: str) -> AttributeMap | None:
        return av.as_map(self.get(name))

    def get_string_set(self, name: str) -> set[str] | None:
        return av.as_string_set(self.get(name))

    def get_number_set(self, name: str) -> set[Decimal] | None:
        return av.as_number_set(self.get(name))

    def get_instant(self, name: str) -> datetime | None:
        raw = self.get_string(name)
        if raw is None:
            return None
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)

    def get_date(self, name: str) -> date | None:
        raw = self.get_string(name)
        if raw is None:
            return None
        try:
            return date.fromisoformat(raw)
        except ValueError:
            return None

    def update(
        self,
        mutator: Callable[[MutableItem], Any] | None = None,
        *,
        updater: ItemUpdater | None = None,
    ) -> Item:
        target = updater if updater is not None else self._session
        return target.update_item(self, mutator)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(pk={self.pk!r}, sk={self.sk!r}, loaded={self._loaded})"
