from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace

from .errors import ValidationError


@dataclass(frozen=True)
class IndexDefinition:
    name: str
    pk: str
    sk: str | None = None


@dataclass(frozen=True)
class TableConfig:
    """Table and key-schema settings shared by every session on a table."""

    table_name: str
    pk_name: str = "pk"
    sk_name: str | None = "sk"
    ttl_attribute: str | None = None
    indexes: tuple[IndexDefinition, ...] = ()

    def __post_init__(self) -> None:
        if not self.table_name:
            raise ValidationError("table_name is required")
        if not self.pk_name:
            raise ValidationError("pk_name is required")
        seen: set[str] = set()
        for idx in self.indexes:
            if idx.name in seen:
                raise ValidationError(f"duplicate index name: {idx.name}")
            seen.add(idx.name)

    def with_index(self, name: str, pk: str, sk: str | None = None) -> TableConfig:
        return replace(self, indexes=(*self.indexes, IndexDefinition(name=name, pk=pk, sk=sk)))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> TableConfig:
        table_name = (environ.get("DYNAITEM_TABLE") or "").strip()
        if not table_name:
            raise ValidationError("DYNAITEM_TABLE is not set")

        sk_name: str | None = environ.get("DYNAITEM_SK_NAME", "sk").strip()
        return cls(
            table_name=table_name,
            pk_name=environ.get("DYNAITEM_PK_NAME", "pk").strip() or "pk",
            sk_name=sk_name or None,
            ttl_attribute=(environ.get("DYNAITEM_TTL_ATTRIBUTE") or "").strip() or None,
        )
