from __future__ import annotations

import re
from collections.abc import Callable, Mapping

from .attributes import AttributeValue
from .errors import ValidationError

_PATH_SEGMENT = re.compile(r"^([^\[\]]+)((?:\[\d+\])*)$")
_TOKEN = re.compile(r"[#:][A-Za-z0-9_]+")


def alias_path(path: str, next_alias: Callable[[], str]) -> tuple[str, dict[str, str]]:
    """Alias each segment of a dotted document path.

    ``a.b[2].c`` becomes ``#x1.#x2[2].#x3`` with one name placeholder per
    segment; list indexes stay literal.
    """
    if not path:
        raise ValidationError("attribute name is required")
    names: dict[str, str] = {}
    parts: list[str] = []
    for segment in path.split("."):
        match = _PATH_SEGMENT.match(segment)
        if match is None:
            raise ValidationError(f"invalid attribute path: {path}")
        alias = next_alias()
        names[alias] = match.group(1)
        parts.append(alias + match.group(2))
    return ".".join(parts), names


def referenced(*expressions: str | None) -> set[str]:
    out: set[str] = set()
    for expr in expressions:
        if expr:
            out.update(_TOKEN.findall(expr))
    return out


def prune(
    names: Mapping[str, str],
    values: Mapping[str, AttributeValue],
    *expressions: str | None,
) -> tuple[dict[str, str], dict[str, AttributeValue]]:
    """Keep only the placeholders the expressions actually reference."""
    used = referenced(*expressions)
    return (
        {k: v for k, v in names.items() if k in used},
        {k: v for k, v in values.items() if k in used},
    )


def merge_names(target: dict[str, str], extra: Mapping[str, str]) -> None:
    for alias, name in extra.items():
        if not alias.startswith("#"):
            raise ValidationError(f"expression attribute name must start with '#': {alias}")
        if target.get(alias, name) != name:
            raise ValidationError(f"expression attribute name collision: {alias}")
        target[alias] = name


def merge_values(target: dict[str, AttributeValue], extra: Mapping[str, AttributeValue]) -> None:
    for alias, value in extra.items():
        if not alias.startswith(":"):
            raise ValidationError(f"expression attribute value must start with ':': {alias}")
        if target.get(alias, value) != value:
            raise ValidationError(f"expression attribute value collision: {alias}")
        target[alias] = value
