"""
Unit tests for the QueryEngine facade.

Tests immutable chaining, filter wiring and normalization, ordering state,
pagination, terminals and their async variants, build-time failures that
never reach the source, and materialization logging.
Dependencies: pytest, pytest-asyncio, unittest.mock, recordql.core.query_engine.engine
System role: Public API validation
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from recordql.boundary.sources.memory_source import InMemoryQuerySource
from recordql.configs.engine import QueryEngineSettings
from recordql.core.exceptions import (
    ElementTypeMismatchError,
    NonNumericFieldError,
    OrderingStateError,
    PaginationError,
    UnknownFieldError,
    UnsupportedAggregateError,
)
from recordql.core.query_engine.aggregation import Grouping
from recordql.core.query_engine.engine import QueryEngine
from recordql.core.query_engine.expressions import Compare, ComparisonOperator, FieldRef, Not
from recordql.core.query_engine.predicates import PredicateBuilder


@dataclass
class Item:
    name: str
    score: float
    vec: list[float]


@pytest.fixture
def hybrid_items() -> list[Item]:
    """Provide the two-item hybrid ranking scenario."""
    return [Item("b", 0.0, [0.0, 1.0]), Item("a", 1.0, [1.0, 0.0])]


def names(items) -> list[str]:
    return [item.name for item in items]


class TestChaining:
    """Test suite for immutable chaining."""

    def test_where_between_keeps_inclusive_bounds(self, people_engine: QueryEngine) -> None:
        """Test ages [17, 18, 30, 31] between 18 and 30 keep 18 and 30."""
        # Act
        result = people_engine.where_between("age", 18, 30).to_list()

        # Assert
        assert sorted({p.age for p in result}) == [18, 30]
        assert 17 not in {p.age for p in result} and 31 not in {p.age for p in result}

    def test_transformations_return_new_engines(self, people_engine: QueryEngine) -> None:
        """Test the original engine is unchanged by chained calls."""
        # Act
        filtered = people_engine.where_greater_than("age", 20)

        # Assert
        assert filtered is not people_engine
        assert len(people_engine.to_list()) == 5
        assert names(filtered.to_list()) == ["carol", "dave", "Eve"]

    def test_intermediate_engines_can_be_reused(self, people_engine: QueryEngine) -> None:
        """Test branching from one intermediate engine."""
        # Arrange
        adults = people_engine.where_greater_than("age", 17)

        # Act
        by_name = adults.order_by("name").to_list()
        by_age = adults.order_by("age", descending=True).to_list()

        # Assert
        assert names(by_name) == ["Eve", "bob", "carol", "dave"]
        assert names(by_age) == ["dave", "carol", "Eve", "bob"]

    def test_element_type_comes_from_source(self, people_engine: QueryEngine, person_type) -> None:
        """Test the engine exposes its source's element type."""
        # Act & Assert
        assert people_engine.element_type is person_type
        assert isinstance(people_engine.build(), InMemoryQuerySource)


class TestFilters:
    """Test suite for where_* wiring."""

    def test_string_and_null_filters(self, people_engine: QueryEngine) -> None:
        """Test string, not-null and negated string filters."""
        # Act & Assert
        assert names(people_engine.where_contains_case_insensitive("name", "E").to_list()) == ["alice", "dave", "Eve"]
        assert names(people_engine.where_starts_with("name", "b").to_list()) == ["bob"]
        assert names(people_engine.where_ends_with("name", "ol").to_list()) == ["carol"]
        assert names(people_engine.where_not_null("nickname").to_list()) == ["alice", "carol"]
        assert names(people_engine.where_not_contains("name", "a").to_list()) == ["bob", "Eve"]
        assert names(people_engine.where_not_ends_with("name", "e").to_list()) == ["bob", "carol"]

    def test_nested_and_collection_filters(self, people_engine: QueryEngine) -> None:
        """Test null-safe chained equality, membership and collection filters."""
        # Act & Assert
        assert names(people_engine.where_null_safe_equals("Address.City.Name", "Lyon").to_list()) == ["bob"]
        assert names(people_engine.where_in("name", ["bob", "dave", "zed"]).to_list()) == ["bob", "dave"]
        assert names(people_engine.where_collection_contains("tags", "admin").to_list()) == ["alice"]

    def test_numeric_date_and_vector_filters(self, people_engine: QueryEngine) -> None:
        """Test absolute, substring, date and vector distance filters."""
        # Act & Assert
        assert names(people_engine.where_absolute_less_than("score", 0.3).to_list()) == ["bob"]
        assert names(people_engine.where_substring_equals("name", 0, 2, "da").to_list()) == ["dave"]
        assert names(people_engine.where_date_equals("joined", "2024-01-31").to_list()) == ["alice"]
        assert names(
            people_engine.where_vector_distance_less_than("embedding", [0.0, 1.0], 0.5).to_list()
        ) == ["bob", "carol"]

    def test_where_active_is_opt_in(self, people_engine: QueryEngine) -> None:
        """Test soft-deleted records are only excluded when asked."""
        # Act & Assert
        assert len(people_engine.to_list()) == 5
        assert names(people_engine.where_active().to_list()) == ["alice", "bob", "Eve"]

    def test_where_accepts_composed_predicates(self, people_engine: QueryEngine, person_type) -> None:
        """Test a pre-built predicate composed with | filters the engine."""
        # Arrange
        builder = PredicateBuilder(person_type)
        predicate = builder.less_than("age", 18) | builder.equals("name", "dave")

        # Act & Assert
        assert names(people_engine.where(predicate).to_list()) == ["alice", "dave"]

    def test_where_rejects_foreign_predicate(self, people_engine: QueryEngine) -> None:
        """Test a predicate over another element type is refused."""
        # Arrange
        foreign = PredicateBuilder(Item).equals("name", "a")

        # Act & Assert
        with pytest.raises(ElementTypeMismatchError):
            people_engine.where(foreign)


class TestSourceInteraction:
    """Test suite for what reaches the QuerySource."""

    def test_invalid_query_never_reaches_source(self, mock_source) -> None:
        """Test build-time errors are raised before filter() is called."""
        # Arrange
        engine = QueryEngine(mock_source)

        # Act & Assert
        with pytest.raises(UnknownFieldError):
            engine.where_equals("Address.Country", "FR")
        with pytest.raises(OrderingStateError):
            engine.then_by("age")
        mock_source.filter.assert_not_called()
        mock_source.order_by.assert_not_called()

    def test_filters_are_normalized_before_reaching_source(self, mock_source, person_type) -> None:
        """Test NOT over a comparison arrives as the inverted comparison."""
        # Arrange
        engine = QueryEngine(mock_source)
        predicate = Not(PredicateBuilder(person_type).greater_than("age", 20))

        # Act
        engine.where(predicate)

        # Assert
        (sent,), _ = mock_source.filter.call_args
        assert isinstance(sent, Compare) and sent.op is ComparisonOperator.LE

    def test_group_by_delegates_to_source(self, mock_source) -> None:
        """Test grouping is handed to the source with a null-safe key."""
        # Arrange
        mock_source.group_by.return_value = [Grouping(17, ())]
        engine = QueryEngine(mock_source)

        # Act
        groups = engine.group_by("age")

        # Assert
        (key,), _ = mock_source.group_by.call_args
        assert isinstance(key, FieldRef) and key.null_safe
        assert key.path.text == "age"
        assert groups == [Grouping(17, ())]
        mock_source.materialize.assert_not_called()

    @pytest.mark.asyncio
    async def test_agroup_by_delegates_to_source(self, mock_source) -> None:
        """Test async grouping awaits the source's agroup_by."""
        # Arrange
        mock_source.agroup_by = AsyncMock(return_value=[Grouping(18, ())])
        engine = QueryEngine(mock_source)

        # Act
        groups = await engine.agroup_by("age")

        # Assert
        mock_source.agroup_by.assert_awaited_once()
        assert groups == [Grouping(18, ())]


class TestOrderingState:
    """Test suite for order_by/then_by state rules."""

    def test_then_by_without_order_by_raises(self, people_engine: QueryEngine) -> None:
        """Test then_by requires a primary ordering."""
        # Act & Assert
        with pytest.raises(OrderingStateError):
            people_engine.then_by("name")
        with pytest.raises(OrderingStateError):
            people_engine.then_by_vector_similarity("embedding", [1.0, 0.0])

    def test_filter_after_order_by_clears_ordering(self, people_engine: QueryEngine) -> None:
        """Test a filter ends the ordered lineage."""
        # Arrange
        ordered = people_engine.order_by("age")

        # Act
        filtered = ordered.where_greater_than("age", 0)

        # Assert
        assert ordered.is_ordered and not filtered.is_ordered
        with pytest.raises(OrderingStateError):
            filtered.then_by("name")

    def test_then_by_chains_secondary_key(self, people_engine: QueryEngine) -> None:
        """Test ties on the primary key are broken by the secondary key."""
        # Act
        result = people_engine.order_by("age").then_by("score").to_list()

        # Assert
        assert names(result) == ["alice", "bob", "Eve", "carol", "dave"]

    def test_vector_similarity_orderings(self, people_engine: QueryEngine) -> None:
        """Test most-similar-first ordering and a vector tie-breaker."""
        # Act
        by_similarity = people_engine.order_by_vector_similarity("embedding", [0.0, 1.0]).to_list()
        by_age_then_vector = (
            people_engine.order_by("age")
            .then_by_vector_similarity("embedding", [1.0, 0.0])
            .to_list()
        )

        # Assert
        assert names(by_similarity)[:3] == ["bob", "carol", "alice"]
        assert names(by_age_then_vector) == ["alice", "bob", "carol", "Eve", "dave"]


class TestPagination:
    """Test suite for paginate()."""

    def test_paginate_after_ordering(self, people_engine: QueryEngine) -> None:
        """Test skip then take over an ordered query."""
        # Act
        page = people_engine.order_by("age").paginate(1, 2)

        # Assert
        assert names(page.to_list()) == ["bob", "carol"]
        assert not page.is_ordered

    def test_filter_after_paginate_applies_to_page(self, people_engine: QueryEngine) -> None:
        """Test steps run in call order."""
        # Act
        result = people_engine.paginate(0, 2).where_greater_than("age", 17).to_list()

        # Assert
        assert names(result) == ["bob"]

    @pytest.mark.parametrize("skip, take", [(-1, 2), (0, -5)])
    def test_negative_bounds_raise(self, people_engine: QueryEngine, skip: int, take: int) -> None:
        """Test negative skip or take is rejected."""
        # Act & Assert
        with pytest.raises(PaginationError):
            people_engine.paginate(skip, take)


class TestTerminals:
    """Test suite for terminal operations."""

    def test_count_and_any(self, people_engine: QueryEngine) -> None:
        """Test count and any delegate to the source."""
        # Act & Assert
        assert people_engine.count() == 5
        assert people_engine.any()
        assert not people_engine.where_equals("name", "zed").any()

    def test_sum_and_average(self, people_engine: QueryEngine) -> None:
        """Test numeric aggregates and their result types."""
        # Act & Assert
        assert people_engine.sum("age", int) == 126
        assert people_engine.sum("score") == pytest.approx(1.7)
        assert people_engine.sum("score", Decimal) == Decimal("1.7")
        assert people_engine.average("age") == pytest.approx(25.2)

    def test_aggregates_over_empty_query(self, people_engine: QueryEngine) -> None:
        """Test an empty query sums to zero and has no average."""
        # Arrange
        empty = people_engine.where_equals("name", "zed")

        # Act & Assert
        assert empty.sum("age", int) == 0
        assert empty.average("age") is None

    def test_aggregate_type_errors_are_build_time(self, people_engine: QueryEngine) -> None:
        """Test unsupported aggregates fail before materializing."""
        # Act & Assert
        with pytest.raises(NonNumericFieldError):
            people_engine.sum("name")
        with pytest.raises(UnsupportedAggregateError):
            people_engine.sum("score", int)

    def test_group_by_nested_key(self, people_engine: QueryEngine) -> None:
        """Test groups keyed by a nested path, None hops grouping under None."""
        # Act
        groups = people_engine.group_by("address.city.name")

        # Assert
        assert [(g.key, names(g)) for g in groups] == [
            ("Paris", ["alice", "Eve"]),
            ("Lyon", ["bob"]),
            (None, ["carol", "dave"]),
        ]

    def test_distinct_by_first_wins(self, people_engine: QueryEngine) -> None:
        """Test one item per key, the first in materialization order."""
        # Act & Assert
        assert names(people_engine.distinct_by("age")) == ["alice", "bob", "carol", "dave"]
        assert names(people_engine.order_by("name").distinct_by("age")) == ["Eve", "alice", "bob", "dave"]

    def test_select_fields(self, people_engine: QueryEngine) -> None:
        """Test projection to ordered path/value mappings."""
        # Act
        rows = people_engine.where_equals("name", "dave").select_fields("name", "address.city.name")

        # Assert
        assert rows == [{"name": "dave", "address.city.name": None}]

    def test_hybrid_ranking_scenario(self, hybrid_items: list[Item]) -> None:
        """Test a scores 1.0 and b scores 0.0 with equal weights."""
        # Arrange
        engine = QueryEngine.from_items(hybrid_items, Item)

        # Act
        ranked = engine.to_hybrid_ranking(lambda i: i.score, "vec", [1.0, 0.0], 0.5, 0.5)

        # Assert
        assert names(ranked) == ["a", "b"]

    def test_hybrid_weights_default_from_settings(self, hybrid_items: list[Item]) -> None:
        """Test omitted weights come from the engine settings."""
        # Arrange
        settings = QueryEngineSettings(default_text_weight=0.0, default_vector_weight=1.0)
        engine = QueryEngine.from_items(hybrid_items, Item, settings=settings)

        # Act
        ranked = engine.to_hybrid_ranking(lambda i: i.score, "vec", [0.0, 1.0])

        # Assert
        assert names(ranked) == ["b", "a"]

    def test_order_by_score(self, people_engine: QueryEngine) -> None:
        """Test ranking by an arbitrary scorer."""
        # Act
        ranked = people_engine.order_by_score(lambda p: len(p.name))

        # Assert
        assert names(ranked)[:2] == ["alice", "carol"]
        assert names(people_engine.order_by_score(lambda p: p.age, descending=False))[0] == "alice"

    def test_external_full_text_search(self, people_engine: QueryEngine) -> None:
        """Test joining with an external index by path or callable key."""
        # Arrange
        hits = {"carol", "alice", "zed"}
        scores = {"alice": 0.4, "carol": 0.9}

        # Act
        by_path = people_engine.external_full_text_search(hits, "name", scores)
        by_callable = people_engine.external_full_text_search(hits, lambda p: p.name)

        # Assert
        assert names(by_path) == ["carol", "alice"]
        assert names(by_callable) == ["alice", "carol"]

    def test_external_search_key_path_is_resolved(self, people_engine: QueryEngine) -> None:
        """Test an unknown key path fails at build time."""
        # Act & Assert
        with pytest.raises(UnknownFieldError):
            people_engine.external_full_text_search({"x"}, "missing")


class TestAsyncTerminals:
    """Test suite for async terminal variants."""

    @pytest.mark.asyncio
    async def test_async_variants_match_sync(self, people_engine: QueryEngine) -> None:
        """Test every async terminal returns what its sync twin does."""
        # Arrange
        engine = people_engine.where_greater_than("age", 17)

        # Act & Assert
        assert names(await engine.ato_list()) == names(engine.to_list())
        assert await engine.acount() == engine.count() == 4
        assert await engine.aany() is True
        assert await engine.asum("age", int) == 109
        assert await engine.aaverage("score") == pytest.approx(engine.average("score"))
        assert [g.key for g in await engine.agroup_by("age")] == [18, 30, 31]
        assert names(await engine.adistinct_by("age")) == ["bob", "carol", "dave"]
        assert await engine.aselect_fields("name") == engine.select_fields("name")
        assert names(await engine.aorder_by_score(lambda p: p.score)) == names(engine.order_by_score(lambda p: p.score))
        assert names(await engine.aexternal_full_text_search({"bob"}, "name")) == ["bob"]

    @pytest.mark.asyncio
    async def test_async_hybrid_ranking(self, hybrid_items: list[Item]) -> None:
        """Test the async hybrid ranking scenario."""
        # Arrange
        engine = QueryEngine.from_items(hybrid_items, Item)

        # Act
        ranked = await engine.ato_hybrid_ranking(lambda i: i.score, "vec", [1.0, 0.0])

        # Assert
        assert names(ranked) == ["a", "b"]


class TestLogging:
    """Test suite for engine logging."""

    def test_large_materialization_logs_warning(self, people, person_type, caplog) -> None:
        """Test exceeding the threshold warns without limiting results."""
        # Arrange
        settings = QueryEngineSettings(materialization_warning_threshold=2)
        engine = QueryEngine.from_items(people, person_type, settings=settings)

        # Act
        with caplog.at_level(logging.WARNING, logger="recordql.core.query_engine.engine"):
            result = engine.to_list()

        # Assert
        assert len(result) == 5
        assert any("threshold" in record.getMessage() for record in caplog.records)

    def test_build_error_is_logged_and_reraised(self, people_engine: QueryEngine, caplog) -> None:
        """Test build failures are logged with their operation."""
        # Act
        with caplog.at_level(logging.WARNING, logger="recordql.core.query_engine.engine"):
            with pytest.raises(UnknownFieldError):
                people_engine.where_equals("nope", 1)

        # Assert
        failures = [r for r in caplog.records if r.getMessage() == "Query build failed"]
        assert failures and failures[0].operation == "where_equals"
