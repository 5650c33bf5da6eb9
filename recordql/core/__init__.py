"""
Core query logic module.

Contains the exception hierarchy and the query engine.
All path resolution, predicate, ordering and ranking rules reside here.
"""

from recordql.core.exceptions import (
    QueryEngineError,
    ResolutionError,
    UnknownFieldError,
    OrderingStateError,
    ConversionError,
    EvaluationError,
    ElementTypeMismatchError,
    PaginationError,
    SourceError,
    NotTranslatableError,
)

__all__ = [
    "QueryEngineError",
    "ResolutionError",
    "UnknownFieldError",
    "OrderingStateError",
    "ConversionError",
    "EvaluationError",
    "ElementTypeMismatchError",
    "PaginationError",
    "SourceError",
    "NotTranslatableError",
]
