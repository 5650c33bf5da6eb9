"""
In-memory query source.

Wraps a snapshot of records and records each filter/order/skip/take as a
pipeline step; nothing runs until ``materialize``. Steps apply in call
order, so ``take(5).filter(p)`` filters the first five records, and an
ordering followed by then_by orderings sorts once with all keys.

Dependencies: recordql.core.query_engine
System role: Default collaborator for lists, fixtures and materialized results
"""

import enum
from collections.abc import Iterable
from dataclasses import dataclass
from itertools import islice
from typing import Any, Generic, TypeVar

from recordql.boundary.sources.base import QuerySource
from recordql.core.query_engine.expressions import Predicate
from recordql.core.query_engine.ordering import Ordering, apply_orderings

T = TypeVar("T")


class _StepKind(str, enum.Enum):
    FILTER = "filter"
    ORDER = "order"
    SKIP = "skip"
    TAKE = "take"


@dataclass(frozen=True)
class _Step:
    kind: _StepKind
    argument: Any


class InMemoryQuerySource(QuerySource[T], Generic[T]):
    """
    Query source over an in-memory snapshot.

    Args:
        items: Records; iterated once and kept as a tuple
        element_type: Record type paths are resolved against
    """

    def __init__(self, items: Iterable[T], element_type: type[T], steps: tuple[_Step, ...] = ()) -> None:
        self._items = tuple(items)
        self._element_type = element_type
        self._steps = steps

    @property
    def element_type(self) -> type[T]:
        return self._element_type

    def _with(self, kind: _StepKind, argument: Any) -> "InMemoryQuerySource[T]":
        source = InMemoryQuerySource.__new__(InMemoryQuerySource)
        source._items = self._items
        source._element_type = self._element_type
        source._steps = self._steps + (_Step(kind, argument),)
        return source

    def filter(self, predicate: Predicate) -> "InMemoryQuerySource[T]":
        return self._with(_StepKind.FILTER, predicate)

    def order_by(self, ordering: Ordering) -> "InMemoryQuerySource[T]":
        return self._with(_StepKind.ORDER, ordering)

    def skip(self, count: int) -> "InMemoryQuerySource[T]":
        return self._with(_StepKind.SKIP, count)

    def take(self, count: int) -> "InMemoryQuerySource[T]":
        return self._with(_StepKind.TAKE, count)

    def materialize(self) -> list[T]:
        current: Iterable[T] = self._items
        pending: list[Ordering] = []
        for step in self._steps:
            if step.kind is _StepKind.ORDER:
                if step.argument.primary and pending:
                    current = apply_orderings(current, pending)
                    pending = []
                pending.append(step.argument)
                continue
            if pending:
                current = apply_orderings(current, pending)
                pending = []
            if step.kind is _StepKind.FILTER:
                current = [item for item in current if step.argument(item)]
            elif step.kind is _StepKind.SKIP:
                current = list(islice(current, step.argument, None))
            else:
                current = list(islice(current, step.argument))
        if pending:
            current = apply_orderings(current, pending)
        return list(current)

    def __len__(self) -> int:
        return self.count()

    def __repr__(self) -> str:
        return f"InMemoryQuerySource({self._element_type.__name__}, {len(self._items)} items, {len(self._steps)} steps)"
