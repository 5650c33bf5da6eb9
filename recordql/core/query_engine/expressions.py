"""
Predicate and value expression trees.

Predicates are immutable trees of frozen dataclasses rather than opaque
callables, so they can be rewritten (negation normalization), compared
structurally, evaluated in memory (``predicate(item)``) and translated by
a store collaborator. Predicates compose with ``&``, ``|`` and ``~``.

Evaluation follows SQL-like null handling: ordering comparisons and string
matches against a None operand are False; ``==``/``!=`` compare None normally.

Dependencies: recordql.core.query_engine.path_resolver, vector_math
System role: Shared vocabulary between builders, normalizer and sources
"""

import enum
import operator
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from recordql.core.exceptions import ElementTypeMismatchError, EvaluationError
from recordql.core.query_engine.path_resolver import FieldPath
from recordql.core.query_engine.vector_math import cosine_distance, cosine_similarity


class Expression:
    """Base class for expression nodes."""

    def evaluate(self, item: Any) -> Any:
        raise NotImplementedError

    def children(self) -> tuple["Expression", ...]:
        return ()

    @property
    def element_type(self) -> Any:
        """Element type the expression reads from, or None for constants."""
        for child in self.children():
            found = child.element_type
            if found is not None:
                return found
        return None


class Predicate(Expression):
    """Boolean expression over an element."""

    def __call__(self, item: Any) -> bool:
        return bool(self.evaluate(item))

    def __and__(self, other: "Predicate") -> "And":
        return And(self, other)

    def __or__(self, other: "Predicate") -> "Or":
        return Or(self, other)

    def __invert__(self) -> "Not":
        return Not(self)


class ComparisonOperator(str, enum.Enum):
    EQ = "=="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="

    @property
    def inverted(self) -> "ComparisonOperator":
        """Operator whose result is the negation of this one."""
        return _INVERSE[self]

    @property
    def function(self) -> Callable[[Any, Any], bool]:
        return _FUNCTIONS[self]


_INVERSE = {
    ComparisonOperator.EQ: ComparisonOperator.NE,
    ComparisonOperator.NE: ComparisonOperator.EQ,
    ComparisonOperator.GT: ComparisonOperator.LE,
    ComparisonOperator.LT: ComparisonOperator.GE,
    ComparisonOperator.GE: ComparisonOperator.LT,
    ComparisonOperator.LE: ComparisonOperator.GT,
}

_FUNCTIONS = {
    ComparisonOperator.EQ: operator.eq,
    ComparisonOperator.NE: operator.ne,
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.GE: operator.ge,
    ComparisonOperator.LE: operator.le,
}


class StringMatchKind(str, enum.Enum):
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


# Value expressions

@dataclass(frozen=True)
class FieldRef(Expression):
    """Reads a resolved path from the element."""

    path: FieldPath
    null_safe: bool = False

    def evaluate(self, item: Any) -> Any:
        return self.path.get(item, null_safe=self.null_safe)

    @property
    def element_type(self) -> Any:
        return self.path.root_type

    def __str__(self) -> str:
        return f"x.{self.path.text}"


@dataclass(frozen=True)
class Abs(Expression):
    operand: Expression

    def evaluate(self, item: Any) -> Any:
        value = self.operand.evaluate(item)
        return None if value is None else abs(value)

    def children(self) -> tuple[Expression, ...]:
        return (self.operand,)

    def __str__(self) -> str:
        return f"abs({self.operand})"


@dataclass(frozen=True)
class Substring(Expression):
    """Bounded substring; out-of-range bounds fail at evaluation time."""

    operand: Expression
    start: int
    length: int

    def evaluate(self, item: Any) -> Any:
        value = self.operand.evaluate(item)
        if value is None:
            return None
        if self.start < 0 or self.length < 0 or self.start + self.length > len(value):
            raise EvaluationError(
                f"Substring({self.start}, {self.length}) is out of range for a value of length {len(value)}",
                start=self.start,
                length=self.length,
            )
        return value[self.start:self.start + self.length]

    def children(self) -> tuple[Expression, ...]:
        return (self.operand,)

    def __str__(self) -> str:
        return f"{self.operand}[{self.start}:{self.start + self.length}]"


@dataclass(frozen=True)
class DateOf(Expression):
    """Calendar date of a date/datetime value."""

    operand: Expression

    def evaluate(self, item: Any) -> Any:
        value = self.operand.evaluate(item)
        return value.date() if isinstance(value, datetime) else value

    def children(self) -> tuple[Expression, ...]:
        return (self.operand,)

    def __str__(self) -> str:
        return f"date({self.operand})"


@dataclass(frozen=True)
class CosineDistance(Expression):
    operand: Expression
    query: tuple[float, ...]

    def evaluate(self, item: Any) -> float:
        return cosine_distance(self.operand.evaluate(item), self.query)

    def children(self) -> tuple[Expression, ...]:
        return (self.operand,)

    def __str__(self) -> str:
        return f"cosine_distance({self.operand}, <{len(self.query)}d>)"


@dataclass(frozen=True)
class CosineSimilarity(Expression):
    operand: Expression
    query: tuple[float, ...]

    def evaluate(self, item: Any) -> float:
        return cosine_similarity(self.operand.evaluate(item), self.query)

    def children(self) -> tuple[Expression, ...]:
        return (self.operand,)

    def __str__(self) -> str:
        return f"cosine_similarity({self.operand}, <{len(self.query)}d>)"


# Predicates

@dataclass(frozen=True)
class Constant(Predicate):
    """Literal value; a boolean constant is also a predicate."""

    value: Any

    def evaluate(self, item: Any) -> Any:
        return self.value

    def __str__(self) -> str:
        return repr(self.value)


TRUE = Constant(True)
FALSE = Constant(False)


@dataclass(frozen=True)
class Compare(Predicate):
    op: ComparisonOperator
    left: Expression
    right: Expression

    def evaluate(self, item: Any) -> bool:
        left = self.left.evaluate(item)
        right = self.right.evaluate(item)
        if self.op in (ComparisonOperator.EQ, ComparisonOperator.NE):
            return self.op.function(left, right)
        if left is None or right is None:
            return False
        try:
            return self.op.function(left, right)
        except TypeError as exc:
            raise EvaluationError(
                f"Cannot evaluate {self}: {exc}",
                left=type(left).__name__,
                right=type(right).__name__,
            ) from exc

    def children(self) -> tuple[Expression, ...]:
        return (self.left, self.right)

    def __str__(self) -> str:
        return f"({self.left} {self.op.value} {self.right})"


def _check_same_element(left: Expression, right: Expression) -> None:
    left_type, right_type = left.element_type, right.element_type
    if left_type is not None and right_type is not None and left_type is not right_type:
        raise ElementTypeMismatchError(
            f"Cannot combine predicates over '{getattr(left_type, '__name__', left_type)}' "
            f"and '{getattr(right_type, '__name__', right_type)}'"
        )


@dataclass(frozen=True)
class And(Predicate):
    left: Predicate
    right: Predicate

    def __post_init__(self) -> None:
        _check_same_element(self.left, self.right)

    def evaluate(self, item: Any) -> bool:
        return self.left(item) and self.right(item)

    def children(self) -> tuple[Expression, ...]:
        return (self.left, self.right)

    def __str__(self) -> str:
        return f"({self.left} AND {self.right})"


@dataclass(frozen=True)
class Or(Predicate):
    left: Predicate
    right: Predicate

    def __post_init__(self) -> None:
        _check_same_element(self.left, self.right)

    def evaluate(self, item: Any) -> bool:
        return self.left(item) or self.right(item)

    def children(self) -> tuple[Expression, ...]:
        return (self.left, self.right)

    def __str__(self) -> str:
        return f"({self.left} OR {self.right})"


@dataclass(frozen=True)
class Not(Predicate):
    operand: Predicate

    def evaluate(self, item: Any) -> bool:
        return not self.operand(item)

    def children(self) -> tuple[Expression, ...]:
        return (self.operand,)

    def __str__(self) -> str:
        return f"NOT {self.operand}"


@dataclass(frozen=True)
class StringMatch(Predicate):
    kind: StringMatchKind
    target: Expression
    value: str
    case_insensitive: bool = False

    def evaluate(self, item: Any) -> bool:
        text = self.target.evaluate(item)
        if text is None:
            return False
        needle = self.value
        if self.case_insensitive:
            text, needle = text.lower(), needle.lower()
        if self.kind is StringMatchKind.CONTAINS:
            return needle in text
        if self.kind is StringMatchKind.STARTS_WITH:
            return text.startswith(needle)
        return text.endswith(needle)

    def children(self) -> tuple[Expression, ...]:
        return (self.target,)

    def __str__(self) -> str:
        suffix = "_ci" if self.case_insensitive else ""
        return f"{self.kind.value}{suffix}({self.target}, {self.value!r})"


@dataclass(frozen=True)
class Membership(Predicate):
    """Value equality against a fixed set of candidates."""

    target: Expression
    values: tuple[Any, ...]

    def evaluate(self, item: Any) -> bool:
        return self.target.evaluate(item) in self.values

    def children(self) -> tuple[Expression, ...]:
        return (self.target,)

    def __str__(self) -> str:
        return f"({self.target} IN <{len(self.values)} values>)"


@dataclass(frozen=True)
class CollectionContains(Predicate):
    """True when any element of a collection leaf equals ``value``."""

    target: Expression
    value: Any

    def evaluate(self, item: Any) -> bool:
        collection = self.target.evaluate(item)
        if collection is None:
            return False
        return any(element == self.value for element in collection)

    def children(self) -> tuple[Expression, ...]:
        return (self.target,)

    def __str__(self) -> str:
        return f"any({self.target} == {self.value!r})"


def field_of(expression: Expression) -> FieldRef | None:
    """The single FieldRef a value expression reads, if any."""
    if isinstance(expression, FieldRef):
        return expression
    for child in expression.children():
        found = field_of(child)
        if found is not None:
            return found
    return None
