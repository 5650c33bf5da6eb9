"""
Predicate and ordering translation to SQLAlchemy.

Walks a predicate tree and emits the equivalent SQLAlchemy clause against
a mapped entity (a mapped class or an aliased subquery entity). Multi-hop
paths become nested ``relationship.has()`` criteria, so no joins are added
and the row set keeps one row per element.

Case-sensitive string matches use case-exact functions (position, substr)
rather than LIKE, whose case handling depends on the database; only the
case-insensitive variants use LIKE over lower-cased operands.

Null handling mirrors in-memory evaluation: ``!=`` against a value on a
nullable column is rendered as IS DISTINCT FROM, and NOT wraps its operand
in COALESCE(..., false) so rows where the operand is NULL are kept.

Vector nodes (cosine distance/similarity) are never translated; they raise
NotTranslatableError before any statement is executed.

Dependencies: sqlalchemy
System role: Query-language adapter for SQLAlchemyQuerySource
"""

from collections.abc import Callable
from typing import Any

from sqlalchemy import Date, Integer, and_, false, func, not_, or_, true
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import QueryableAttribute, RelationshipProperty
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.functions import FunctionElement

from recordql.core.exceptions import NotTranslatableError
from recordql.core.query_engine.expressions import (
    Abs,
    And,
    CollectionContains,
    Compare,
    ComparisonOperator,
    Constant,
    DateOf,
    Expression,
    FieldRef,
    Membership,
    Not,
    Or,
    Predicate,
    StringMatch,
    StringMatchKind,
    Substring,
    field_of,
)
from recordql.core.query_engine.ordering import Ordering
from recordql.core.query_engine.path_resolver import FieldPath


class position_of(FunctionElement):
    """1-based position of a substring, 0 when absent; compares case-exactly."""

    type = Integer()
    name = "position_of"
    inherit_cache = True


@compiles(position_of)
def _compile_position_of(element: position_of, compiler: Any, **kw: Any) -> str:
    haystack, needle = list(element.clauses)
    return f"instr({compiler.process(haystack, **kw)}, {compiler.process(needle, **kw)})"


@compiles(position_of, "postgresql")
def _compile_position_of_postgresql(element: position_of, compiler: Any, **kw: Any) -> str:
    haystack, needle = list(element.clauses)
    return f"strpos({compiler.process(haystack, **kw)}, {compiler.process(needle, **kw)})"


def is_relationship(attribute: QueryableAttribute) -> bool:
    return isinstance(attribute.property, RelationshipProperty)


def is_collection(attribute: QueryableAttribute) -> bool:
    return is_relationship(attribute) and bool(attribute.property.uselist)


class SQLTranslator:
    """
    Translates expression trees against one entity.

    Attributes:
        entity: Mapped class or aliased entity paths start from
    """

    def __init__(self, entity: Any) -> None:
        self.entity = entity

    # Attribute access

    def _attribute(self, host: Any, name: str, path: FieldPath) -> QueryableAttribute:
        attribute = getattr(host, name, None)
        if not isinstance(attribute, QueryableAttribute):
            raise NotTranslatableError(
                f"'{path.text}' is not a mapped attribute and cannot be queried in SQL",
                path=path.text,
            )
        return attribute

    def _attributes(self, path: FieldPath) -> list[QueryableAttribute]:
        hosts = [self.entity] + [step.declared_type for step in path.steps[:-1]]
        return [self._attribute(host, step.name, path) for host, step in zip(hosts, path.steps)]

    def _through(self, path: FieldPath, build: Callable[[QueryableAttribute], ColumnElement]) -> ColumnElement:
        """Build the leaf criterion, then wrap it in has() for every hop before it."""
        attributes = self._attributes(path)
        criterion = build(attributes[-1])
        for attribute in reversed(attributes[:-1]):
            if not is_relationship(attribute) or is_collection(attribute):
                raise NotTranslatableError(
                    f"Hop '{attribute.key}' of '{path.text}' is not a many-to-one relationship",
                    path=path.text,
                )
            criterion = attribute.has(criterion)
        return criterion

    def column(self, expression: Expression) -> ColumnElement:
        """SQL expression for a single-hop value expression."""
        ref = self._field(expression)
        if ref.path.is_multi_hop:
            raise NotTranslatableError(
                f"Multi-hop path '{ref.path.text}' cannot be used as a SQL key",
                path=ref.path.text,
            )
        attribute = self._attributes(ref.path)[-1]
        if is_relationship(attribute):
            raise NotTranslatableError(f"Relationship '{ref.path.text}' is not a column", path=ref.path.text)
        return self._apply(expression, attribute)

    def _field(self, expression: Expression) -> FieldRef:
        ref = field_of(expression)
        if ref is None:
            raise NotTranslatableError(f"Expression {expression} reads no field")
        return ref

    def _apply(self, expression: Expression, leaf: ColumnElement) -> ColumnElement:
        if isinstance(expression, FieldRef):
            return leaf
        if isinstance(expression, Abs):
            return func.abs(self._apply(expression.operand, leaf))
        if isinstance(expression, Substring):
            # SQL substr is 1-based
            return func.substr(self._apply(expression.operand, leaf), expression.start + 1, expression.length)
        if isinstance(expression, DateOf):
            return func.date(self._apply(expression.operand, leaf), type_=Date)
        raise NotTranslatableError(f"{type(expression).__name__} has no SQL equivalent: {expression}")

    # Predicates

    def predicate(self, predicate: Predicate) -> ColumnElement:
        """
        Translate ``predicate`` to a SQLAlchemy boolean clause.

        Raises:
            NotTranslatableError: If any node has no SQL equivalent
        """
        if isinstance(predicate, Constant):
            if isinstance(predicate.value, bool):
                return true() if predicate.value else false()
            raise NotTranslatableError(f"Constant {predicate.value!r} is not a boolean predicate")
        if isinstance(predicate, And):
            return and_(self.predicate(predicate.left), self.predicate(predicate.right))
        if isinstance(predicate, Or):
            return or_(self.predicate(predicate.left), self.predicate(predicate.right))
        if isinstance(predicate, Not):
            return not_(func.coalesce(self.predicate(predicate.operand), false()))
        if isinstance(predicate, Compare):
            return self._compare(predicate)
        if isinstance(predicate, StringMatch):
            return self._string_match(predicate)
        if isinstance(predicate, Membership):
            return self._membership(predicate)
        if isinstance(predicate, CollectionContains):
            return self._collection_contains(predicate)
        raise NotTranslatableError(f"{type(predicate).__name__} has no SQL equivalent: {predicate}")

    def _compare(self, node: Compare) -> ColumnElement:
        if not isinstance(node.right, Constant):
            raise NotTranslatableError(f"Only comparisons against constants translate: {node}")
        value = node.right.value
        ref = self._field(node.left)

        def build(attribute: QueryableAttribute) -> ColumnElement:
            if is_relationship(attribute):
                return self._compare_relationship(node, attribute, value)
            left = self._apply(node.left, attribute)
            if value is None and node.op is ComparisonOperator.EQ:
                return left.is_(None)
            if value is None and node.op is ComparisonOperator.NE:
                return left.is_not(None)
            if node.op is ComparisonOperator.NE and ref.path.leaf_nullable:
                return left.is_distinct_from(value)
            return node.op.function(left, value)

        return self._through(ref.path, build)

    def _compare_relationship(self, node: Compare, attribute: QueryableAttribute, value: Any) -> ColumnElement:
        if node.left is not field_of(node.left):
            raise NotTranslatableError(f"Cannot apply {node.left} to relationship '{attribute.key}'")
        if is_collection(attribute):
            if value is not None:
                raise NotTranslatableError(f"Collection '{attribute.key}' can only be compared with None")
            if node.op is ComparisonOperator.EQ:
                return ~attribute.any()
            if node.op is ComparisonOperator.NE:
                return attribute.any()
        elif node.op in (ComparisonOperator.EQ, ComparisonOperator.NE):
            return node.op.function(attribute, value)
        raise NotTranslatableError(f"Operator {node.op.value} does not apply to relationship '{attribute.key}'")

    def _string_match(self, node: StringMatch) -> ColumnElement:
        ref = self._field(node.target)

        def build(attribute: QueryableAttribute) -> ColumnElement:
            column = self._apply(node.target, attribute)
            needle = node.value
            if node.case_insensitive:
                return self._like(func.lower(column), node.kind, needle.lower())
            if node.kind is StringMatchKind.CONTAINS:
                return position_of(column, needle) > 0
            if node.kind is StringMatchKind.STARTS_WITH:
                return func.substr(column, 1, len(needle)) == needle
            return func.substr(column, func.length(column) - len(needle) + 1) == needle

        return self._through(ref.path, build)

    def _like(self, column: ColumnElement, kind: StringMatchKind, needle: str) -> ColumnElement:
        if kind is StringMatchKind.CONTAINS:
            return column.contains(needle, autoescape=True)
        if kind is StringMatchKind.STARTS_WITH:
            return column.startswith(needle, autoescape=True)
        return column.endswith(needle, autoescape=True)

    def _membership(self, node: Membership) -> ColumnElement:
        ref = self._field(node.target)
        present = [value for value in node.values if value is not None]
        includes_none = len(present) != len(node.values)

        def build(attribute: QueryableAttribute) -> ColumnElement:
            column = self._apply(node.target, attribute)
            clause = column.in_(present)
            return or_(clause, column.is_(None)) if includes_none else clause

        return self._through(ref.path, build)

    def _collection_contains(self, node: CollectionContains) -> ColumnElement:
        ref = self._field(node.target)

        def build(attribute: QueryableAttribute) -> ColumnElement:
            if not is_collection(attribute):
                raise NotTranslatableError(
                    f"'{ref.path.text}' is not a relationship collection; membership runs in memory only",
                    path=ref.path.text,
                )
            return attribute.contains(node.value)

        return self._through(ref.path, build)

    # Orderings

    def ordering(self, ordering: Ordering) -> ColumnElement:
        """ORDER BY clause; None sorts first ascending and last descending."""
        column = self.column(ordering.key)
        if ordering.descending:
            return column.desc().nulls_last()
        return column.asc().nulls_first()
