"""
Aggregation, grouping, distinct and projection.

Grouping and distinct compare keys by value after boxing them into a
hashable form (lists and arrays become tuples, dicts become sorted item
tuples), so vector or collection keys group like scalars.

distinct_by keeps the first item per key in materialization order; that
choice is deterministic only when the upstream order is.

Dependencies: numpy, recordql.core.query_engine.path_resolver
System role: Terminal in-memory aggregates and shaping helpers
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Generic, TypeVar

import numpy as np

from recordql.core.exceptions import NonNumericFieldError, UnsupportedAggregateError
from recordql.core.query_engine.path_resolver import FieldPath, ValueKind

T = TypeVar("T")

# Result types each numeric leaf kind can be summed into
_SUM_RESULT_TYPES: dict[ValueKind, tuple[type, ...]] = {
    ValueKind.INTEGER: (int, float, Decimal),
    ValueKind.FLOAT: (float, Decimal),
    ValueKind.DECIMAL: (Decimal, float),
}
_AVERAGE_RESULT_TYPES: tuple[type, ...] = (float, Decimal)


@dataclass(frozen=True)
class Grouping(Generic[T]):
    """Items sharing one key, in first-seen order."""

    key: Any
    items: tuple[T, ...]

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


def boxed_key(value: Any) -> Any:
    """Value-equal stand-in for a group/distinct key; hashable unless the key holds unhashable objects."""
    if isinstance(value, np.ndarray):
        return tuple(boxed_key(v) for v in value.tolist())
    if isinstance(value, (list, tuple)):
        return tuple(boxed_key(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(boxed_key(v) for v in value)
    if isinstance(value, Mapping):
        return tuple(sorted(((k, boxed_key(v)) for k, v in value.items()), key=lambda kv: repr(kv[0])))
    return value


class _KeyIndex:
    """
    Slot lookup by key value.

    Hashable keys go through a dict; unhashable ones (plain dataclasses,
    pydantic models) are kept in a list and matched with ``==``, first match wins.
    """

    def __init__(self) -> None:
        self._hashed: dict[Any, int] = {}
        self._unhashed: list[tuple[Any, int]] = []

    def find(self, key: Any) -> int | None:
        try:
            return self._hashed.get(key)
        except TypeError:
            for candidate, slot in self._unhashed:
                if candidate == key:
                    return slot
            return None

    def add(self, key: Any, slot: int) -> None:
        try:
            self._hashed[key] = slot
        except TypeError:
            self._unhashed.append((key, slot))


def group_items(items: Iterable[T], key: Callable[[T], Any]) -> list[Grouping[T]]:
    index = _KeyIndex()
    groups: list[tuple[Any, list[T]]] = []
    for item in items:
        value = key(item)
        boxed = boxed_key(value)
        slot = index.find(boxed)
        if slot is None:
            slot = len(groups)
            index.add(boxed, slot)
            groups.append((value, []))
        groups[slot][1].append(item)
    return [Grouping(value, tuple(members)) for value, members in groups]


def distinct_items(items: Iterable[T], key: Callable[[T], Any]) -> list[T]:
    index = _KeyIndex()
    kept: list[T] = []
    for item in items:
        boxed = boxed_key(key(item))
        if index.find(boxed) is None:
            index.add(boxed, len(kept))
            kept.append(item)
    return kept


_MISSING = object()


def read_permissive(item: Any, path: str) -> Any:
    """
    Walk ``path`` at runtime, returning None at the first None or missing hop.

    Attribute names are matched exactly first, then case-insensitively;
    mappings are read by key.
    """
    current = item
    for segment in path.split("."):
        if current is None:
            return None
        current = _read_member(current, segment)
        if current is _MISSING:
            return None
    return current


def _read_member(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        if name in obj:
            return obj[name]
        for key in obj:
            if isinstance(key, str) and key.lower() == name.lower():
                return obj[key]
        return _MISSING
    value = getattr(obj, name, _MISSING)
    if value is not _MISSING:
        return value
    lowered = name.lower()
    for attr in dir(obj):
        if attr.lower() == lowered and not attr.startswith("__"):
            return getattr(obj, attr, _MISSING)
    return _MISSING


def select_fields(items: Iterable[Any], paths: Iterable[str]) -> list[dict[str, Any]]:
    """Project each item to an ordered ``{path: value}`` mapping."""
    paths = list(paths)
    return [{path: read_permissive(item, path) for path in paths} for item in items]


class Aggregator:
    """Build-time checks and in-memory evaluation for sum/average."""

    def check_sum(self, field_path: FieldPath, result_type: type) -> None:
        self._check(field_path, result_type, _SUM_RESULT_TYPES.get(field_path.leaf_kind, ()), "sum")

    def check_average(self, field_path: FieldPath, result_type: type) -> None:
        allowed = _AVERAGE_RESULT_TYPES if field_path.leaf_kind.is_numeric else ()
        self._check(field_path, result_type, allowed, "average")

    def _check(self, field_path: FieldPath, result_type: type, allowed: tuple[type, ...], operation: str) -> None:
        if not field_path.leaf_kind.is_numeric:
            raise NonNumericFieldError(
                f"Cannot {operation} non-numeric field '{field_path.text}'",
                path=field_path.text,
            )
        if result_type not in allowed:
            raise UnsupportedAggregateError(
                f"{operation} of '{field_path.text}' ({field_path.leaf_kind.value}) "
                f"is not supported as '{getattr(result_type, '__name__', result_type)}'",
                path=field_path.text,
            )

    def sum(self, values: Iterable[Any], result_type: type) -> Any:
        """Sum non-None values; an empty input sums to zero."""
        present = [v for v in values if v is not None]
        if result_type is Decimal:
            return sum((_to_decimal(v) for v in present), Decimal(0))
        if result_type is float:
            return float(sum(float(v) for v in present))
        return int(sum(present))

    def average(self, values: Iterable[Any], result_type: type) -> Any:
        """Mean of non-None values, or None when there are none."""
        present = [v for v in values if v is not None]
        if not present:
            return None
        if result_type is Decimal:
            return sum((_to_decimal(v) for v in present), Decimal(0)) / len(present)
        return float(sum(float(v) for v in present) / len(present))

    def coerce(self, value: Any, result_type: type) -> Any:
        """Cast a store-computed aggregate to ``result_type``."""
        if value is None:
            return None
        if result_type is Decimal:
            return _to_decimal(value)
        return result_type(value)


def _to_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))
