"""
Query source abstraction.

The query engine's only collaborator: a lazily evaluated, filterable,
orderable, pageable sequence of one element type that can be materialized
on demand. Sources are immutable; every transformation returns a new one.

Aggregates, counting and grouping have in-memory defaults built on
``materialize``; stores that can push them down override them.

Dependencies: recordql.core.query_engine
System role: Boundary contract between the engine and data stores
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from recordql.core.query_engine.aggregation import Aggregator, Grouping, group_items
from recordql.core.query_engine.expressions import Expression, Predicate
from recordql.core.query_engine.ordering import Ordering

T = TypeVar("T")


class QuerySource(ABC, Generic[T]):
    """Abstract lazily evaluated sequence of ``element_type`` records."""

    @property
    @abstractmethod
    def element_type(self) -> type[T]:
        """Type every record in the source has."""

    @abstractmethod
    def filter(self, predicate: Predicate) -> "QuerySource[T]":
        """Keep records matching ``predicate``."""

    @abstractmethod
    def order_by(self, ordering: Ordering) -> "QuerySource[T]":
        """Apply a primary ordering, or a then_by ordering when ``ordering.primary`` is False."""

    @abstractmethod
    def skip(self, count: int) -> "QuerySource[T]":
        """Drop the first ``count`` records."""

    @abstractmethod
    def take(self, count: int) -> "QuerySource[T]":
        """Keep at most ``count`` records."""

    @abstractmethod
    def materialize(self) -> list[T]:
        """Execute and return every record."""

    async def amaterialize(self) -> list[T]:
        """Async variant of materialize; defaults to the sync path."""
        return self.materialize()

    def group_by(self, key: Expression) -> list[Grouping[T]]:
        """Group by ``key`` in first-seen order; stores that can group natively override this."""
        return in_memory_groups(self.materialize(), key)

    async def agroup_by(self, key: Expression) -> list[Grouping[T]]:
        return in_memory_groups(await self.amaterialize(), key)

    def count(self) -> int:
        return len(self.materialize())

    async def acount(self) -> int:
        return len(await self.amaterialize())

    def any(self) -> bool:
        return bool(self.take(1).materialize())

    async def aany(self) -> bool:
        return bool(await self.take(1).amaterialize())

    def sum(self, key: Expression, result_type: type) -> Any:
        return Aggregator().sum((key.evaluate(item) for item in self.materialize()), result_type)

    async def asum(self, key: Expression, result_type: type) -> Any:
        items = await self.amaterialize()
        return Aggregator().sum((key.evaluate(item) for item in items), result_type)

    def average(self, key: Expression, result_type: type) -> Any:
        return Aggregator().average((key.evaluate(item) for item in self.materialize()), result_type)

    async def aaverage(self, key: Expression, result_type: type) -> Any:
        items = await self.amaterialize()
        return Aggregator().average((key.evaluate(item) for item in items), result_type)


def in_memory_groups(items: list[T], key: Expression) -> list[Grouping[T]]:
    """Group already materialized items by ``key``."""
    return group_items(items, key.evaluate)
