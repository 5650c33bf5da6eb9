"""
Ordering builders.

An Ordering is a key expression, a direction and a primary/subsequent
marker. Primary orderings restart the sort; subsequent (then_by) orderings
break ties of the ones before them. Keys read paths null-safely and sort
None before any value, as SQL does for ascending keys.

Dependencies: recordql.core.query_engine (path_resolver, expressions, conversion)
System role: String-path and vector-similarity orderings
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from recordql.core.exceptions import EvaluationError, NonComparableTypeError, NonVectorFieldError
from recordql.core.query_engine.conversion import convert_to
from recordql.core.query_engine.expressions import CosineSimilarity, Expression, FieldRef
from recordql.core.query_engine.path_resolver import FieldPath, PathResolver, ValueKind, get_default_resolver


@dataclass(frozen=True)
class Ordering:
    """
    Sort key plus direction.

    Attributes:
        key: Value expression evaluated per element
        descending: Sort direction
        primary: False for then_by orderings
    """

    key: Expression
    descending: bool = False
    primary: bool = True

    def sort_key(self, item: Any) -> tuple[bool, Any]:
        value = self.key.evaluate(item)
        return (value is not None, value)

    def __str__(self) -> str:
        direction = "DESC" if self.descending else "ASC"
        kind = "ORDER BY" if self.primary else "THEN BY"
        return f"{kind} {self.key} {direction}"


def apply_orderings(items: Iterable[Any], orderings: Sequence[Ordering]) -> list[Any]:
    """
    Sort ``items`` by a primary ordering followed by its then_by orderings.

    Stable sorts run from the last key to the first, so earlier keys win
    and ties keep their incoming order.

    Raises:
        EvaluationError: If keys of different types cannot be compared
    """
    result = list(items)
    for ordering in reversed(orderings):
        try:
            result.sort(key=ordering.sort_key, reverse=ordering.descending)
        except TypeError as exc:
            raise EvaluationError(f"Cannot sort by {ordering.key}: {exc}") from exc
    return result


class OrderingBuilder:
    """Builds orderings over one element type."""

    def __init__(self, element_type: Any, resolver: PathResolver | None = None) -> None:
        self.element_type = element_type
        self.resolver = resolver or get_default_resolver()

    def _sortable(self, path: str) -> FieldPath:
        field_path = self.resolver.resolve(self.element_type, path)
        if not field_path.leaf_kind.is_comparable:
            raise NonComparableTypeError(
                f"Cannot order by '{field_path.text}': type '{getattr(field_path.leaf_type, '__name__', field_path.leaf_type)}' is not comparable",
                path=field_path.text,
            )
        return field_path

    def by_path(self, path: str, descending: bool = False, primary: bool = True) -> Ordering:
        return Ordering(FieldRef(self._sortable(path), null_safe=True), descending, primary)

    def by_vector_similarity(
        self,
        vector_path: str,
        query_vector: Sequence[float],
        descending: bool = True,
        primary: bool = True,
    ) -> Ordering:
        """
        Order by cosine similarity to ``query_vector``.

        ``descending=True`` (the default) puts the most similar vectors
        first; missing or mismatched vectors sort last.
        """
        field_path = self.resolver.resolve(self.element_type, vector_path)
        if field_path.leaf_kind is not ValueKind.VECTOR:
            raise NonVectorFieldError(
                f"Field '{field_path.text}' must be a numeric vector",
                path=field_path.text,
            )
        query = convert_to(query_vector, field_path.leaf_type, ValueKind.VECTOR, field_path.text)
        return Ordering(CosineSimilarity(FieldRef(field_path, null_safe=True), query), descending, primary)
