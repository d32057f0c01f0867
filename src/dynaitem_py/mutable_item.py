from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Literal

from .attributes import AttributeMap, AttributeValue, attribute_value, attribute_value_of, validate_attribute_value
from .errors import ValidationError
from .expressions import alias_path, merge_names, merge_values, prune
from .item import Item

if TYPE_CHECKING:
    from .session import Session
    from .updater import ItemUpdater

type UpdateType = Literal["SET", "REMOVE", "ADD", "DELETE"]

UPDATE_ORDER: tuple[UpdateType, ...] = ("SET", "REMOVE", "ADD", "DELETE")
RETURN_VALUES = frozenset({"NONE", "ALL_OLD", "UPDATED_OLD", "ALL_NEW", "UPDATED_NEW"})


@dataclass
class Operation:
    type: UpdateType
    key: str
    expression: str
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, AttributeValue] = field(default_factory=dict)
    put_value: AttributeValue | None = None
    kind: str = "set"


class MutableItem(Item):
    """Write-side builder for one put or update of one item.

    Every call allocates fresh ``#attrN``/``:attrN`` placeholders from a
    counter owned by this instance. Operations are kept in call order; when
    the request is built only the last operation per attribute is emitted and
    unreferenced placeholders are dropped. Valid for a single ``save()``.
    """

    def __init__(
        self,
        session: Session,
        attributes: Mapping[str, AttributeValue],
        *,
        updater: ItemUpdater | None = None,
    ) -> None:
        super().__init__(session, attributes)
        self._updater: ItemUpdater = updater if updater is not None else session
        self._operations: list[Operation] = []
        self._pending: dict[str, AttributeValue | None] = {}
        self._counter = 0
        self._condition_expression: str | None = None
        self._condition_names: dict[str, str] = {}
        self._condition_values: dict[str, AttributeValue] = {}
        self._return_old_on_failure = False
        self._saved = False

        self.do_not_overwrite = False
        self.replace = False
        self.return_values = "ALL_NEW"

    def _check_open(self) -> None:
        if self._saved:
            raise ValidationError("item has already been saved")

    def _next_index(self) -> int:
        # Skip indexes a caller-supplied condition alias already occupies.
        self._counter += 1
        while f"#attr{self._counter}" in self._condition_names or f":attr{self._counter}" in self._condition_values:
            self._counter += 1
        return self._counter

    def _path(self, key: str) -> tuple[str, dict[str, str]]:
        return alias_path(key, lambda: f"#attr{self._next_index()}")

    def _value_ref(self) -> str:
        return f":attr{self._next_index()}"

    def _last_operation(self, key: str) -> Operation | None:
        for op in reversed(self._operations):
            if op.key == key:
                return op
        return None

    def _record(self, op: Operation) -> MutableItem:
        self._check_open()
        self._operations.append(op)
        return self

    def set(self, key: str, value: Any) -> MutableItem:
        """Set ``key`` to a Python value; ``None`` removes the attribute."""
        return self.set_attribute(key, None if value is None else attribute_value(value))

    def set_attribute(self, key: str, value: AttributeValue | None) -> MutableItem:
        self._check_open()
        path, names = self._path(key)
        if value is None:
            self._pending[key] = None
            return self._record(Operation(type="REMOVE", key=key, expression=path, names=names, kind="remove"))

        validate_attribute_value(value)
        ref = self._value_ref()
        self._pending[key] = value
        return self._record(
            Operation(
                type="SET",
                key=key,
                expression=f"{path} = {ref}",
                names=names,
                values={ref: value},
                put_value=value,
            )
        )

    def put_dict(self, values: Mapping[str, Any]) -> MutableItem:
        """Set every top-level entry of ``values``; keys are attribute names, not paths."""
        for name, value in values.items():
            if "." in name or "[" in name:
                raise ValidationError(f"invalid attribute name: {name}")
            self.set(name, value)
        return self

    def remove(self, key: str) -> MutableItem:
        return self.set_attribute(key, None)

    def increment(self, key: str, amount: int | Decimal = 1) -> MutableItem:
        if isinstance(amount, bool) or not isinstance(amount, (int, Decimal)):
            raise ValidationError("increment amount must be an integer or Decimal")
        if amount == 0:
            return self

        self._check_open()
        last = self._last_operation(key)
        if last is not None and last.kind == "increment":
            (ref,) = last.values
            total = Decimal(last.values[ref]["N"]) + amount
            last.values[ref] = attribute_value(int(total) if total == total.to_integral_value() else total)
            return self

        path, names = self._path(key)
        ref = self._value_ref()
        return self._record(
            Operation(
                type="ADD",
                key=key,
                expression=f"{path} {ref}",
                names=names,
                values={ref: attribute_value(amount)},
                kind="increment",
            )
        )

    def add_to_set(self, key: str, *values: str | int | Decimal) -> MutableItem:
        if not values:
            raise ValidationError("add_to_set requires at least one value")
        path, names = self._path(key)
        ref = self._value_ref()
        return self._record(
            Operation(
                type="ADD",
                key=key,
                expression=f"{path} {ref}",
                names=names,
                values={ref: attribute_value(set(values))},
                kind="set_add",
            )
        )

    def remove_from_set(self, key: str, *values: str | int | Decimal) -> MutableItem:
        if not values:
            raise ValidationError("remove_from_set requires at least one value")
        path, names = self._path(key)
        ref = self._value_ref()
        return self._record(
            Operation(
                type="DELETE",
                key=key,
                expression=f"{path} {ref}",
                names=names,
                values={ref: attribute_value(set(values))},
                kind="set_delete",
            )
        )

    def add_to_list(self, key: str, value: Any) -> MutableItem:
        """Append to a list attribute, creating the list when it is absent."""
        self._check_open()
        element = attribute_value_of(value)

        last = self._last_operation(key)
        if last is not None and last.kind == "list_append":
            ref = next(r for r in last.values if r != ":empty_list")
            last.values[ref] = {"L": [*last.values[ref]["L"], element]}
            return self

        path, names = self._path(key)
        ref = self._value_ref()
        return self._record(
            Operation(
                type="SET",
                key=key,
                expression=f"{path} = list_append(if_not_exists({path}, :empty_list), {ref})",
                names=names,
                values={ref: {"L": [element]}, ":empty_list": {"L": []}},
                kind="list_append",
            )
        )

    def remove_from_list(self, key: str, index: int) -> MutableItem:
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            raise ValidationError("list index must be a non-negative integer")
        path, names = self._path(key)
        return self._record(
            Operation(
                type="REMOVE",
                key=f"{key}[{index}]",
                expression=f"{path}[{index}]",
                names=names,
                kind="list_remove",
            )
        )

    def condition(
        self,
        expression: str,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
        *,
        return_old_on_failure: bool = False,
    ) -> MutableItem:
        """Attach the condition that must hold for the write to apply.

        A later call replaces the expression; placeholder maps accumulate.
        """
        self._check_open()
        if not expression:
            raise ValidationError("condition expression is required")

        bound_names = {k: v for op in self._operations for k, v in op.names.items()}
        bound_names.update(self._condition_names)
        merge_names(bound_names, names or {})
        bound_values = {k: v for op in self._operations for k, v in op.values.items()}
        bound_values.update(self._condition_values)
        converted = {alias: attribute_value_of(value) for alias, value in (values or {}).items()}
        merge_values(bound_values, converted)

        self._condition_expression = expression
        self._condition_names.update(names or {})
        self._condition_values.update(converted)
        self._return_old_on_failure = return_old_on_failure
        return self

    def condition_attribute_equals(self, name: str, value: Any) -> MutableItem:
        path, names = self._path(name)
        ref = self._value_ref()
        return self.condition(f"{path} = {ref}", names, {ref: value})

    def require_attribute_exists(self, name: str) -> MutableItem:
        path, names = self._path(name)
        return self.condition(f"attribute_exists({path})", names)

    def require_attribute_not_exists(self, name: str) -> MutableItem:
        path, names = self._path(name)
        return self.condition(f"attribute_not_exists({path})", names)

    def must_exist(self) -> MutableItem:
        return self.condition("attribute_exists(#pk)", {"#pk": self.session.config.pk_name})

    def no_overwrite(self, *, return_old_on_failure: bool = False) -> MutableItem:
        self.do_not_overwrite = True
        self._return_old_on_failure = return_old_on_failure
        return self

    def replacing(self) -> MutableItem:
        self.replace = True
        return self

    def returning(self, option: str) -> MutableItem:
        if option not in RETURN_VALUES:
            raise ValidationError(f"unsupported return values option: {option}")
        self.return_values = option
        return self

    def set_gsi(self, index: int, pk: str, sk: str) -> MutableItem:
        """Write the conventional ``_gsi{N}pk``/``_gsi{N}sk`` index attributes."""
        self.set(f"_gsi{index}pk", pk)
        return self.set(f"_gsi{index}sk", sk)

    def set_ttl(self, when: datetime | timedelta) -> MutableItem:
        ttl_attribute = self.session.config.ttl_attribute
        if ttl_attribute is None:
            return self
        if isinstance(when, timedelta):
            when = datetime.now(UTC) + when
        return self.set(ttl_attribute, int(when.timestamp()))

    def clear_ttl(self) -> MutableItem:
        ttl_attribute = self.session.config.ttl_attribute
        if ttl_attribute is None:
            return self
        return self.remove(ttl_attribute)

    def get(self, name: str) -> AttributeValue | None:
        if name in self._pending:
            return self._pending[name]
        return super().get(name)

    @property
    def condition_expression(self) -> str | None:
        return self._condition_expression

    @property
    def is_full_write(self) -> bool:
        return self.replace or self.do_not_overwrite

    @property
    def operations(self) -> list[Operation]:
        """Operations that will be emitted, last one per attribute."""
        last: dict[str, int] = {}
        for i, op in enumerate(self._operations):
            last[op.key] = i
        return [op for i, op in enumerate(self._operations) if last[op.key] == i]

    @property
    def has_updates(self) -> bool:
        return bool(self._operations)

    def build_update_expression(self) -> str:
        grouped: dict[UpdateType, list[str]] = {t: [] for t in UPDATE_ORDER}
        for op in self.operations:
            grouped[op.type].append(op.expression)
        return " ".join(f"{t} " + ", ".join(grouped[t]) for t in UPDATE_ORDER if grouped[t])

    def _placeholders(self, expressions: list[str]) -> tuple[dict[str, str], dict[str, AttributeValue]]:
        names: dict[str, str] = {}
        values: dict[str, AttributeValue] = {}
        for op in self.operations:
            names.update(op.names)
            values.update(op.values)
        merge_names(names, self._condition_names)
        merge_values(values, self._condition_values)
        return prune(names, values, *expressions)

    def put_attributes(self) -> AttributeMap:
        """The attribute map a full write stores: set values plus the key."""
        out: AttributeMap = {}
        for op in self.operations:
            if op.put_value is not None:
                out[op.key] = op.put_value
        out.update(self.key)
        return out

    def _put_condition(self) -> tuple[str | None, dict[str, str]]:
        expression = self._condition_expression
        if not self.do_not_overwrite:
            return expression, {}
        pk_name = self.session.config.pk_name
        if self._condition_names.get("#pk", pk_name) != pk_name:
            raise ValidationError("expression attribute name collision: #pk")
        guard = "attribute_not_exists(#pk)"
        return (guard if expression is None else f"{guard} AND ({expression})"), {"#pk": pk_name}

    def _expressions(self) -> list[str]:
        if self.is_full_write:
            expression, _ = self._put_condition()
            return [expression] if expression else []
        out = [self.build_update_expression()]
        if self._condition_expression is not None:
            out.append(self._condition_expression)
        return out

    def expression_attribute_names(self) -> dict[str, str]:
        names, _ = self._placeholders(self._expressions())
        if self.is_full_write:
            names.update(self._put_condition()[1])
        return names

    def expression_attribute_values(self) -> dict[str, AttributeValue]:
        _, values = self._placeholders(self._expressions())
        return values

    def _finish(self, req: dict[str, Any], expressions: list[str], extra: dict[str, str]) -> dict[str, Any]:
        names, values = self._placeholders(expressions)
        names.update(extra)
        if names:
            req["ExpressionAttributeNames"] = names
        if values:
            req["ExpressionAttributeValues"] = values
        if "ConditionExpression" in req and self._return_old_on_failure:
            req["ReturnValuesOnConditionCheckFailure"] = "ALL_OLD"
        return req

    def build_put_request(self, *, transactional: bool = False) -> dict[str, Any]:
        req: dict[str, Any] = {"TableName": self.session.config.table_name, "Item": self.put_attributes()}
        expression, extra = self._put_condition()
        if expression is not None:
            req["ConditionExpression"] = expression
        if not transactional and self.return_values in {"NONE", "ALL_OLD"}:
            req["ReturnValues"] = self.return_values
        return self._finish(req, [expression] if expression else [], extra)

    def build_update_request(self, *, transactional: bool = False) -> dict[str, Any]:
        update_expression = self.build_update_expression()
        if not update_expression:
            raise ValidationError("no updates provided")

        req: dict[str, Any] = {
            "TableName": self.session.config.table_name,
            "Key": self.key,
            "UpdateExpression": update_expression,
        }
        expressions = [update_expression]
        if self._condition_expression is not None:
            req["ConditionExpression"] = self._condition_expression
            expressions.append(self._condition_expression)
        if not transactional:
            req["ReturnValues"] = self.return_values
        return self._finish(req, expressions, {})

    def build_delete_request(self) -> dict[str, Any]:
        req: dict[str, Any] = {"TableName": self.session.config.table_name, "Key": self.key}
        if self._condition_expression is None:
            return req
        req["ConditionExpression"] = self._condition_expression
        return self._finish(req, [self._condition_expression], {})

    def save(self) -> Item:
        self._check_open()
        self._saved = True
        return self._updater._apply_save(self)
