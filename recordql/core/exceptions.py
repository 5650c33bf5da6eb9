"""
Query engine exceptions.

Build-time errors (resolution, conversion, ordering state) are raised
before the backing source is touched. Evaluation errors surface while a
built predicate or key runs against real data.

Dependencies: none
System role: Error taxonomy for recordql
"""

from typing import Any


class QueryEngineError(Exception):
    """Base class for query engine errors."""

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(self.message)


class ResolutionError(QueryEngineError):
    """Raised when a field path or its leaf type is unusable for an operation."""

    def __init__(self, message: str, path: str | None = None, **context: Any):
        self.path = path
        super().__init__(message, path=path, **context)


class UnknownFieldError(ResolutionError):
    """Raised when a path segment names no field on the hop's type."""

    def __init__(self, segment: str, host_type: Any, path: str | None = None):
        self.segment = segment
        self.host_type = host_type
        host_name = getattr(host_type, "__name__", repr(host_type))
        super().__init__(
            f"Unknown field '{segment}' on type '{host_name}'",
            path=path,
            segment=segment,
            host_type=host_name,
        )


class NonComparableTypeError(ResolutionError):
    """Raised when an ordering comparison targets a non-ordered leaf type."""
    pass


class NonTextualFieldError(ResolutionError):
    """Raised when a string operator targets a non-text leaf."""
    pass


class NonVectorFieldError(ResolutionError):
    """Raised when a vector operator targets a leaf that is not a numeric array."""
    pass


class NonNumericFieldError(ResolutionError):
    """Raised when a numeric operator or aggregate targets a non-numeric leaf."""
    pass


class NonCollectionFieldError(ResolutionError):
    """Raised when a collection operator targets a scalar leaf."""
    pass


class UnsupportedAggregateError(ResolutionError):
    """Raised when an aggregate result type cannot hold the leaf values."""
    pass


class OrderingStateError(QueryEngineError):
    """Raised when then_by is used on an engine without a primary ordering."""
    pass


class ConversionError(QueryEngineError):
    """Raised when a constant cannot be converted to the leaf's type."""

    def __init__(self, value: Any, target_type: Any, path: str | None = None):
        self.value = value
        self.target_type = target_type
        self.path = path
        target_name = getattr(target_type, "__name__", repr(target_type))
        super().__init__(
            f"Cannot convert {value!r} to '{target_name}' for field '{path}'",
            path=path,
            target_type=target_name,
        )


class EvaluationError(QueryEngineError):
    """Raised when a built predicate or key fails against a concrete record."""
    pass


class ElementTypeMismatchError(QueryEngineError, TypeError):
    """Raised when combining predicates built over different element types."""
    pass


class PaginationError(QueryEngineError, ValueError):
    """Raised for negative skip/take values."""
    pass


class SourceError(QueryEngineError):
    """Base class for query source collaborator failures."""
    pass


class NotTranslatableError(SourceError):
    """Raised when a source cannot express a predicate or ordering node."""
    pass


class SyncMaterializationError(SourceError):
    """Raised when a synchronous terminal is used on an async-only source."""
    pass
