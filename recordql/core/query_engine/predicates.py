"""
Predicate builders.

Every builder follows the same shape: resolve the path, check the leaf
type suits the operator, convert the constant to the leaf type, build the
comparison node. All checks happen here, before any source is touched.

Dependencies: recordql.core.query_engine (path_resolver, conversion, expressions)
System role: String-path filters -> typed predicate trees
"""

from collections.abc import Iterable, Sequence
from datetime import date, datetime
from typing import Any

from recordql.core.exceptions import (
    ConversionError,
    NonCollectionFieldError,
    NonComparableTypeError,
    NonNumericFieldError,
    NonTextualFieldError,
    NonVectorFieldError,
    ResolutionError,
    UnknownFieldError,
)
from recordql.core.query_engine.conversion import convert_for_path, convert_item, convert_to
from recordql.core.query_engine.expressions import (
    Abs,
    And,
    CollectionContains,
    Compare,
    ComparisonOperator,
    Constant,
    CosineDistance,
    DateOf,
    FieldRef,
    Membership,
    Not,
    Predicate,
    StringMatch,
    StringMatchKind,
    Substring,
)
from recordql.core.query_engine.path_resolver import FieldPath, PathResolver, ValueKind, get_default_resolver


class PredicateBuilder:
    """
    Builds predicates over one element type.

    Attributes:
        element_type: Type every path is resolved against
        resolver: Path resolver (defaults to the process-wide one)
    """

    def __init__(self, element_type: Any, resolver: PathResolver | None = None) -> None:
        self.element_type = element_type
        self.resolver = resolver or get_default_resolver()

    # Resolution helpers

    def resolve(self, path: str) -> FieldPath:
        return self.resolver.resolve(self.element_type, path)

    def comparable(self, path: str) -> FieldPath:
        field_path = self.resolve(path)
        if not field_path.leaf_kind.is_comparable:
            raise NonComparableTypeError(
                f"Field '{field_path.text}' of type '{_type_name(field_path.leaf_type)}' is not comparable",
                path=field_path.text,
            )
        return field_path

    def textual(self, path: str) -> FieldPath:
        field_path = self.resolve(path)
        if field_path.leaf_kind is not ValueKind.TEXT:
            raise NonTextualFieldError(
                f"Field '{field_path.text}' must be a string, found '{_type_name(field_path.leaf_type)}'",
                path=field_path.text,
            )
        return field_path

    def numeric(self, path: str) -> FieldPath:
        field_path = self.resolve(path)
        if not field_path.leaf_kind.is_numeric:
            raise NonNumericFieldError(
                f"Field '{field_path.text}' must be numeric, found '{_type_name(field_path.leaf_type)}'",
                path=field_path.text,
            )
        return field_path

    def vector(self, path: str) -> FieldPath:
        field_path = self.resolve(path)
        if field_path.leaf_kind is not ValueKind.VECTOR:
            raise NonVectorFieldError(
                f"Field '{field_path.text}' must be a numeric vector, found '{_type_name(field_path.leaf_type)}'",
                path=field_path.text,
            )
        return field_path

    # Comparisons

    def compare(self, path: str, op: ComparisonOperator, value: Any) -> Compare:
        if op in (ComparisonOperator.EQ, ComparisonOperator.NE):
            field_path = self.resolve(path)
        else:
            field_path = self.comparable(path)
        return Compare(op, FieldRef(field_path), Constant(convert_for_path(value, field_path)))

    def equals(self, path: str, value: Any) -> Compare:
        return self.compare(path, ComparisonOperator.EQ, value)

    def greater_than(self, path: str, value: Any) -> Compare:
        return self.compare(path, ComparisonOperator.GT, value)

    def less_than(self, path: str, value: Any) -> Compare:
        return self.compare(path, ComparisonOperator.LT, value)

    def between(self, path: str, minimum: Any, maximum: Any) -> And:
        """Inclusive range ``minimum <= leaf <= maximum``."""
        field_path = self.comparable(path)
        field = FieldRef(field_path)
        return And(
            Compare(ComparisonOperator.GE, field, Constant(convert_for_path(minimum, field_path))),
            Compare(ComparisonOperator.LE, field, Constant(convert_for_path(maximum, field_path))),
        )

    def not_null(self, path: str) -> Compare:
        field_path = self.resolve(path)
        return Compare(ComparisonOperator.NE, FieldRef(field_path), Constant(None))

    def null_safe_equals(self, path: str, value: Any) -> Predicate:
        """
        Equality guarded against None on every intermediate hop.

        ``"a.b.c" == v`` becomes ``a != None AND a.b != None AND a.b.c == v``.
        """
        field_path = self.resolve(path)
        comparison = Compare(
            ComparisonOperator.EQ,
            FieldRef(field_path),
            Constant(convert_for_path(value, field_path)),
        )
        guards = [
            Compare(ComparisonOperator.NE, FieldRef(prefix), Constant(None))
            for prefix in field_path.prefixes()
        ]
        if not guards:
            return comparison
        predicate: Predicate = guards[0]
        for guard in guards[1:]:
            predicate = And(predicate, guard)
        return And(predicate, comparison)

    def date_equals(self, path: str, value: date | str) -> Compare:
        field_path = self.resolve(path)
        if field_path.leaf_kind not in (ValueKind.DATE, ValueKind.DATETIME):
            raise ResolutionError(
                f"Field '{field_path.text}' must be a date or datetime, found '{_type_name(field_path.leaf_type)}'",
                path=field_path.text,
            )
        if isinstance(value, datetime):
            value = value.date()
        target = convert_to(value, date, ValueKind.DATE, field_path.text)
        return Compare(ComparisonOperator.EQ, DateOf(FieldRef(field_path)), Constant(target))

    # Strings

    def string_match(
        self,
        path: str,
        kind: StringMatchKind,
        value: str,
        case_insensitive: bool = False,
    ) -> StringMatch:
        field_path = self.textual(path)
        if not isinstance(value, str):
            raise ConversionError(value, str, field_path.text)
        return StringMatch(kind, FieldRef(field_path), value, case_insensitive)

    def contains(self, path: str, value: str) -> StringMatch:
        return self.string_match(path, StringMatchKind.CONTAINS, value)

    def contains_case_insensitive(self, path: str, value: str) -> StringMatch:
        return self.string_match(path, StringMatchKind.CONTAINS, value, case_insensitive=True)

    def starts_with(self, path: str, value: str) -> StringMatch:
        return self.string_match(path, StringMatchKind.STARTS_WITH, value)

    def ends_with(self, path: str, value: str) -> StringMatch:
        return self.string_match(path, StringMatchKind.ENDS_WITH, value)

    def not_contains(self, path: str, value: str) -> Not:
        return Not(self.contains(path, value))

    def not_starts_with(self, path: str, value: str) -> Not:
        return Not(self.starts_with(path, value))

    def not_ends_with(self, path: str, value: str) -> Not:
        return Not(self.ends_with(path, value))

    def substring_equals(self, path: str, start: int, length: int, match: str) -> Compare:
        field_path = self.textual(path)
        return Compare(
            ComparisonOperator.EQ,
            Substring(FieldRef(field_path), int(start), int(length)),
            Constant(match),
        )

    # Sets, collections, numbers

    def is_in(self, path: str, values: Iterable[Any]) -> Membership:
        field_path = self.resolve(path)
        return Membership(FieldRef(field_path), tuple(values))

    def collection_contains(self, path: str, value: Any) -> CollectionContains:
        field_path = self.resolve(path)
        if field_path.leaf_kind not in (ValueKind.COLLECTION, ValueKind.VECTOR):
            raise NonCollectionFieldError(
                f"Field '{field_path.text}' must be a collection, found '{_type_name(field_path.leaf_type)}'",
                path=field_path.text,
            )
        return CollectionContains(FieldRef(field_path), convert_item(value, field_path))

    def absolute_less_than(self, path: str, threshold: float) -> Compare:
        field_path = self.numeric(path)
        limit = convert_to(threshold, float, ValueKind.FLOAT, field_path.text)
        return Compare(ComparisonOperator.LT, Abs(FieldRef(field_path)), Constant(limit))

    def vector_distance_less_than(
        self,
        vector_path: str,
        query_vector: Sequence[float],
        threshold: float,
    ) -> Compare:
        field_path = self.vector(vector_path)
        query = convert_to(query_vector, field_path.leaf_type, ValueKind.VECTOR, field_path.text)
        limit = convert_to(threshold, float, ValueKind.FLOAT, field_path.text)
        return Compare(
            ComparisonOperator.LT,
            CosineDistance(FieldRef(field_path, null_safe=True), query),
            Constant(limit),
        )

    # Soft delete

    def active(self, active_field: str = "is_active", archived_field: str = "is_archived") -> Predicate:
        """
        ``active_field == True AND archived_field == False`` for whichever exist.

        Raises:
            ResolutionError: If the element declares neither flag
        """
        guards: list[Predicate] = []
        for field_name, expected in ((active_field, True), (archived_field, False)):
            try:
                guards.append(self.equals(field_name, expected))
            except UnknownFieldError:
                continue
        if not guards:
            raise ResolutionError(
                f"'{_type_name(self.element_type)}' declares neither '{active_field}' nor '{archived_field}'",
                path=active_field,
            )
        return guards[0] if len(guards) == 1 else And(guards[0], guards[1])


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", str(tp))
