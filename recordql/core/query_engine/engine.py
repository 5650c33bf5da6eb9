"""
Query engine facade.

QueryEngine is an immutable value wrapping a QuerySource and whether that
source currently carries a primary ordering. Filters, orderings and
pagination build a typed node first and only then hand it to the source,
returning a new engine; terminal operations return plain results.

Every build-time check (path resolution, leaf type checks, constant
conversion, ordering state) runs before the source is touched, so an
invalid query never reaches the backing store.

Dependencies: recordql.configs, recordql.core.query_engine, recordql.boundary.sources
System role: Public entry point for composing and running queries
"""

import logging
from collections.abc import Callable, Collection, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from recordql.configs import get_settings
from recordql.configs.engine import QueryEngineSettings
from recordql.core.exceptions import (
    ElementTypeMismatchError,
    OrderingStateError,
    PaginationError,
    QueryEngineError,
)
from recordql.core.query_engine.aggregation import Aggregator, Grouping, distinct_items, select_fields
from recordql.core.query_engine.conversion import convert_to
from recordql.core.query_engine.expressions import Expression, FieldRef, Predicate
from recordql.core.query_engine.negation import NegationNormalizer
from recordql.core.query_engine.ordering import Ordering, OrderingBuilder
from recordql.core.query_engine.path_resolver import PathResolver, ValueKind, get_default_resolver
from recordql.core.query_engine.predicates import PredicateBuilder
from recordql.core.query_engine.ranking import HybridRanker, ScoreFunction, rank_by_external_scores, rank_by_score
from recordql.observability.log_utils import safe_log_value

if TYPE_CHECKING:
    from recordql.boundary.sources.base import QuerySource

logger = logging.getLogger(__name__)

T = TypeVar("T")

KeySelector = str | Callable[[Any], Any]


@dataclass(frozen=True)
class QueryEngine(Generic[T]):
    """
    Immutable, chainable query over a QuerySource.

    Attributes:
        source: Current source; each transformation wraps a new one
        is_ordered: True when the source carries a primary ordering
        settings: Engine tuning (defaults to ``get_settings().query_engine``)
        resolver: Path resolver (defaults to the process-wide one)

    Usage:
        engine = QueryEngine.from_items(people, Person)
        adults = engine.where_between("age", 18, 30).order_by("name").to_list()
    """

    source: "QuerySource[T]"
    is_ordered: bool = False
    settings: QueryEngineSettings | None = field(default=None, compare=False, repr=False)
    resolver: PathResolver | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.settings is None:
            object.__setattr__(self, "settings", get_settings().query_engine)
        if self.resolver is None:
            object.__setattr__(self, "resolver", get_default_resolver())

    @classmethod
    def from_items(
        cls,
        items: Iterable[T],
        element_type: type[T],
        settings: QueryEngineSettings | None = None,
    ) -> "QueryEngine[T]":
        """Engine over an in-memory snapshot of ``items``."""
        from recordql.boundary.sources.memory_source import InMemoryQuerySource

        return cls(InMemoryQuerySource(items, element_type), settings=settings)

    @property
    def element_type(self) -> type[T]:
        return self.source.element_type

    @property
    def _predicates(self) -> PredicateBuilder:
        return PredicateBuilder(self.element_type, self.resolver)

    @property
    def _orderings(self) -> OrderingBuilder:
        return OrderingBuilder(self.element_type, self.resolver)

    @contextmanager
    def _building(self, operation: str, path: Any = None) -> Iterator[None]:
        try:
            yield
        except QueryEngineError as exc:
            logger.warning(
                "Query build failed",
                extra={
                    "operation": operation,
                    "field_path": safe_log_value(path),
                    "element_type": safe_log_value(self.element_type),
                    "error_type": type(exc).__name__,
                    "error": exc.message,
                },
            )
            raise

    # Filters

    def _filtered(self, operation: str, predicate: Predicate) -> "QueryEngine[T]":
        normalized = NegationNormalizer().normalize(predicate)
        logger.debug(
            "Applying filter",
            extra={"operation": operation, "predicate": safe_log_value(normalized)},
        )
        return replace(self, source=self.source.filter(normalized), is_ordered=False)

    def _filter_with(self, operation: str, path: Any, build: Callable[[PredicateBuilder], Predicate]) -> "QueryEngine[T]":
        with self._building(operation, path):
            predicate = build(self._predicates)
        return self._filtered(operation, predicate)

    def where(self, predicate: Predicate) -> "QueryEngine[T]":
        """
        Filter by a pre-built predicate.

        Raises:
            ElementTypeMismatchError: If the predicate reads a different element type
        """
        with self._building("where"):
            if not isinstance(predicate, Predicate):
                raise TypeError(f"where() expects a Predicate, got {type(predicate).__name__}")
            root = predicate.element_type
            if root is not None and root is not self.element_type:
                raise ElementTypeMismatchError(
                    f"Predicate over '{safe_log_value(root)}' cannot filter '{safe_log_value(self.element_type)}'"
                )
        return self._filtered("where", predicate)

    def where_equals(self, path: str, value: Any) -> "QueryEngine[T]":
        return self._filter_with("where_equals", path, lambda b: b.equals(path, value))

    def where_null_safe_equals(self, path: str, value: Any) -> "QueryEngine[T]":
        """Equality with every intermediate hop guarded against None."""
        return self._filter_with("where_null_safe_equals", path, lambda b: b.null_safe_equals(path, value))

    def where_greater_than(self, path: str, value: Any) -> "QueryEngine[T]":
        return self._filter_with("where_greater_than", path, lambda b: b.greater_than(path, value))

    def where_less_than(self, path: str, value: Any) -> "QueryEngine[T]":
        return self._filter_with("where_less_than", path, lambda b: b.less_than(path, value))

    def where_date_equals(self, path: str, value: date | str) -> "QueryEngine[T]":
        return self._filter_with("where_date_equals", path, lambda b: b.date_equals(path, value))

    def where_contains(self, path: str, value: str) -> "QueryEngine[T]":
        return self._filter_with("where_contains", path, lambda b: b.contains(path, value))

    def where_contains_case_insensitive(self, path: str, value: str) -> "QueryEngine[T]":
        return self._filter_with(
            "where_contains_case_insensitive", path, lambda b: b.contains_case_insensitive(path, value)
        )

    def where_starts_with(self, path: str, value: str) -> "QueryEngine[T]":
        return self._filter_with("where_starts_with", path, lambda b: b.starts_with(path, value))

    def where_ends_with(self, path: str, value: str) -> "QueryEngine[T]":
        return self._filter_with("where_ends_with", path, lambda b: b.ends_with(path, value))

    def where_not_contains(self, path: str, value: str) -> "QueryEngine[T]":
        return self._filter_with("where_not_contains", path, lambda b: b.not_contains(path, value))

    def where_not_starts_with(self, path: str, value: str) -> "QueryEngine[T]":
        return self._filter_with("where_not_starts_with", path, lambda b: b.not_starts_with(path, value))

    def where_not_ends_with(self, path: str, value: str) -> "QueryEngine[T]":
        return self._filter_with("where_not_ends_with", path, lambda b: b.not_ends_with(path, value))

    def where_in(self, path: str, values: Iterable[Any]) -> "QueryEngine[T]":
        values = tuple(values)
        return self._filter_with("where_in", path, lambda b: b.is_in(path, values))

    def where_between(self, path: str, minimum: Any, maximum: Any) -> "QueryEngine[T]":
        """Keep items with ``minimum <= leaf <= maximum``."""
        return self._filter_with("where_between", path, lambda b: b.between(path, minimum, maximum))

    def where_not_null(self, path: str) -> "QueryEngine[T]":
        return self._filter_with("where_not_null", path, lambda b: b.not_null(path))

    def where_absolute_less_than(self, path: str, threshold: float) -> "QueryEngine[T]":
        return self._filter_with("where_absolute_less_than", path, lambda b: b.absolute_less_than(path, threshold))

    def where_substring_equals(self, path: str, start: int, length: int, match: str) -> "QueryEngine[T]":
        """
        Keep items whose ``leaf[start:start + length]`` equals ``match``.

        Out-of-range bounds raise EvaluationError when the filter runs.
        """
        return self._filter_with(
            "where_substring_equals", path, lambda b: b.substring_equals(path, start, length, match)
        )

    def where_collection_contains(self, path: str, value: Any) -> "QueryEngine[T]":
        return self._filter_with("where_collection_contains", path, lambda b: b.collection_contains(path, value))

    def where_vector_distance_less_than(
        self,
        vector_path: str,
        query_vector: Sequence[float],
        threshold: float,
    ) -> "QueryEngine[T]":
        """Keep items whose vector lies within ``threshold`` cosine distance of ``query_vector``."""
        return self._filter_with(
            "where_vector_distance_less_than",
            vector_path,
            lambda b: b.vector_distance_less_than(vector_path, query_vector, threshold),
        )

    def where_active(self, active_field: str | None = None, archived_field: str | None = None) -> "QueryEngine[T]":
        """
        Opt-in soft-delete guard.

        Conjoins ``active_field == True`` and ``archived_field == False`` for
        whichever of the two the element declares. Field names default to
        the configured ``active_field``/``archived_field``.

        Raises:
            ResolutionError: If the element declares neither field
        """
        active = active_field or self.settings.active_field
        archived = archived_field or self.settings.archived_field
        return self._filter_with("where_active", f"{active}|{archived}", lambda b: b.active(active, archived))

    # Orderings

    def _ordered(self, operation: str, ordering: Ordering) -> "QueryEngine[T]":
        logger.debug("Applying ordering", extra={"operation": operation, "ordering": safe_log_value(ordering)})
        return replace(self, source=self.source.order_by(ordering), is_ordered=True)

    def _require_ordered(self, operation: str) -> None:
        if not self.is_ordered:
            raise OrderingStateError(
                f"{operation}() requires a preceding order_by() on the same query",
                operation=operation,
            )

    def order_by(self, path: str, descending: bool = False) -> "QueryEngine[T]":
        with self._building("order_by", path):
            ordering = self._orderings.by_path(path, descending)
        return self._ordered("order_by", ordering)

    def then_by(self, path: str, descending: bool = False) -> "QueryEngine[T]":
        """
        Break ties of the current ordering by ``path``.

        Raises:
            OrderingStateError: If the engine carries no primary ordering
        """
        with self._building("then_by", path):
            self._require_ordered("then_by")
            ordering = self._orderings.by_path(path, descending, primary=False)
        return self._ordered("then_by", ordering)

    def order_by_vector_similarity(
        self,
        vector_path: str,
        query_vector: Sequence[float],
        descending: bool = True,
    ) -> "QueryEngine[T]":
        """Order by cosine similarity to ``query_vector``, most similar first by default."""
        with self._building("order_by_vector_similarity", vector_path):
            ordering = self._orderings.by_vector_similarity(vector_path, query_vector, descending)
        return self._ordered("order_by_vector_similarity", ordering)

    def then_by_vector_similarity(
        self,
        vector_path: str,
        query_vector: Sequence[float],
        descending: bool = True,
    ) -> "QueryEngine[T]":
        with self._building("then_by_vector_similarity", vector_path):
            self._require_ordered("then_by_vector_similarity")
            ordering = self._orderings.by_vector_similarity(vector_path, query_vector, descending, primary=False)
        return self._ordered("then_by_vector_similarity", ordering)

    # Pagination

    def paginate(self, skip: int, take: int) -> "QueryEngine[T]":
        """
        Skip ``skip`` items then keep at most ``take``.

        Raises:
            PaginationError: If either bound is negative
        """
        with self._building("paginate"):
            if skip < 0 or take < 0:
                raise PaginationError(
                    f"skip and take must be non-negative, got skip={skip} take={take}",
                    skip=skip,
                    take=take,
                )
        logger.debug("Applying pagination", extra={"skip": skip, "take": take})
        return replace(self, source=self.source.skip(skip).take(take), is_ordered=False)

    # Terminals

    def build(self) -> "QuerySource[T]":
        """The composed, still unexecuted source."""
        return self.source

    def _log_materialized(self, operation: str, count: int) -> None:
        logger.info(
            "Materialized query",
            extra={"operation": operation, "element_type": safe_log_value(self.element_type), "item_count": count},
        )
        if count > self.settings.materialization_warning_threshold:
            logger.warning(
                "Materialized more items than the configured threshold",
                extra={
                    "operation": operation,
                    "item_count": count,
                    "threshold": self.settings.materialization_warning_threshold,
                },
            )

    def _materialize(self, operation: str) -> list[T]:
        items = self.source.materialize()
        self._log_materialized(operation, len(items))
        return items

    async def _amaterialize(self, operation: str) -> list[T]:
        items = await self.source.amaterialize()
        self._log_materialized(operation, len(items))
        return items

    def to_list(self) -> list[T]:
        return self._materialize("to_list")

    async def ato_list(self) -> list[T]:
        return await self._amaterialize("to_list")

    def count(self) -> int:
        result = self.source.count()
        logger.info("Counted query", extra={"operation": "count", "item_count": result})
        return result

    async def acount(self) -> int:
        result = await self.source.acount()
        logger.info("Counted query", extra={"operation": "count", "item_count": result})
        return result

    def any(self) -> bool:
        return self.source.any()

    async def aany(self) -> bool:
        return await self.source.aany()

    def _aggregate_key(self, operation: str, path: str, result_type: type) -> FieldRef:
        with self._building(operation, path):
            field_path = self._predicates.resolve(path)
            if operation == "sum":
                Aggregator().check_sum(field_path, result_type)
            else:
                Aggregator().check_average(field_path, result_type)
        return FieldRef(field_path, null_safe=True)

    def sum(self, path: str, result_type: type = float) -> int | float | Decimal:
        """
        Sum a numeric leaf; None values are skipped and an empty query sums to 0.

        Raises:
            NonNumericFieldError: If the leaf is not numeric
            UnsupportedAggregateError: If the leaf cannot be summed as ``result_type``
        """
        key = self._aggregate_key("sum", path, result_type)
        return self.source.sum(key, result_type)

    async def asum(self, path: str, result_type: type = float) -> int | float | Decimal:
        key = self._aggregate_key("sum", path, result_type)
        return await self.source.asum(key, result_type)

    def average(self, path: str, result_type: type = float) -> float | Decimal | None:
        """Mean of a numeric leaf, or None when no value is present."""
        key = self._aggregate_key("average", path, result_type)
        return self.source.average(key, result_type)

    async def aaverage(self, path: str, result_type: type = float) -> float | Decimal | None:
        key = self._aggregate_key("average", path, result_type)
        return await self.source.aaverage(key, result_type)

    def _key_ref(self, operation: str, path: str) -> FieldRef:
        with self._building(operation, path):
            return FieldRef(self._predicates.resolve(path), null_safe=True)

    def group_by(self, path: str) -> list[Grouping[T]]:
        """
        Group items by the value at ``path``, in first-seen order.

        The source groups; its default materializes and groups in memory.
        """
        key = self._key_ref("group_by", path)
        groups = self.source.group_by(key)
        logger.info("Grouped query", extra={"operation": "group_by", "field_path": path, "group_count": len(groups)})
        return groups

    async def agroup_by(self, path: str) -> list[Grouping[T]]:
        key = self._key_ref("group_by", path)
        groups = await self.source.agroup_by(key)
        logger.info("Grouped query", extra={"operation": "group_by", "field_path": path, "group_count": len(groups)})
        return groups

    def distinct_by(self, path: str) -> list[T]:
        """
        First item per distinct value at ``path``.

        "First" follows materialization order, so the result is only
        deterministic when the query is ordered.
        """
        key = self._key_ref("distinct_by", path)
        return distinct_items(self._materialize("distinct_by"), key.evaluate)

    async def adistinct_by(self, path: str) -> list[T]:
        key = self._key_ref("distinct_by", path)
        return distinct_items(await self._amaterialize("distinct_by"), key.evaluate)

    def select_fields(self, *paths: str) -> list[dict[str, Any]]:
        """
        Project each item to a ``{path: value}`` mapping.

        Paths are walked permissively at runtime: a None or missing hop
        yields None instead of raising.
        """
        return select_fields(self._materialize("select_fields"), paths)

    async def aselect_fields(self, *paths: str) -> list[dict[str, Any]]:
        return select_fields(await self._amaterialize("select_fields"), paths)

    def _hybrid(
        self,
        vector_path: str,
        query_vector: Sequence[float],
        text_weight: float | None,
        vector_weight: float | None,
    ) -> tuple[HybridRanker, FieldRef, tuple[float, ...]]:
        with self._building("to_hybrid_ranking", vector_path):
            field_path = self._predicates.vector(vector_path)
            query = convert_to(query_vector, field_path.leaf_type, ValueKind.VECTOR, field_path.text)
        ranker = HybridRanker(
            self.settings.default_text_weight if text_weight is None else text_weight,
            self.settings.default_vector_weight if vector_weight is None else vector_weight,
        )
        return ranker, FieldRef(field_path, null_safe=True), query

    def to_hybrid_ranking(
        self,
        text_score: ScoreFunction,
        vector_path: str,
        query_vector: Sequence[float],
        text_weight: float | None = None,
        vector_weight: float | None = None,
    ) -> list[T]:
        """
        Rank every item by ``text_weight * text_score + vector_weight * cosine similarity``.

        Args:
            text_score: Per-item lexical relevance (callable or value expression)
            vector_path: Path to the item's embedding
            query_vector: Vector compared against each embedding
            text_weight: Defaults to the configured ``default_text_weight``
            vector_weight: Defaults to the configured ``default_vector_weight``

        Returns:
            list: Items, best combined score first
        """
        ranker, vector_ref, query = self._hybrid(vector_path, query_vector, text_weight, vector_weight)
        return ranker.rank(self._materialize("to_hybrid_ranking"), text_score, vector_ref.evaluate, query)

    async def ato_hybrid_ranking(
        self,
        text_score: ScoreFunction,
        vector_path: str,
        query_vector: Sequence[float],
        text_weight: float | None = None,
        vector_weight: float | None = None,
    ) -> list[T]:
        ranker, vector_ref, query = self._hybrid(vector_path, query_vector, text_weight, vector_weight)
        items = await self._amaterialize("to_hybrid_ranking")
        return ranker.rank(items, text_score, vector_ref.evaluate, query)

    def order_by_score(self, score: ScoreFunction, descending: bool = True) -> list[T]:
        """Materialize and sort by a caller-supplied scorer."""
        return rank_by_score(self._materialize("order_by_score"), score, descending)

    async def aorder_by_score(self, score: ScoreFunction, descending: bool = True) -> list[T]:
        return rank_by_score(await self._amaterialize("order_by_score"), score, descending)

    def _key_function(self, operation: str, key: KeySelector) -> Callable[[Any], Any]:
        if isinstance(key, str):
            return self._key_ref(operation, key).evaluate
        if isinstance(key, Expression):
            return key.evaluate
        if not callable(key):
            raise TypeError(f"key must be a field path or callable, got {type(key).__name__}")
        return key

    def external_full_text_search(
        self,
        matching_keys: Collection[Any],
        key: KeySelector,
        external_scores: Mapping[Any, float] | None = None,
    ) -> list[T]:
        """
        Join the query with hits from an external full-text index.

        Args:
            matching_keys: Keys the external index matched
            key: Field path or callable giving each item's key
            external_scores: Relevance per key; missing keys score 0.0

        Returns:
            list: Matched items, highest external score first
        """
        key_of = self._key_function("external_full_text_search", key)
        items = self._materialize("external_full_text_search")
        return rank_by_external_scores(items, matching_keys, key_of, external_scores or {})

    async def aexternal_full_text_search(
        self,
        matching_keys: Collection[Any],
        key: KeySelector,
        external_scores: Mapping[Any, float] | None = None,
    ) -> list[T]:
        key_of = self._key_function("external_full_text_search", key)
        items = await self._amaterialize("external_full_text_search")
        return rank_by_external_scores(items, matching_keys, key_of, external_scores or {})
