"""
recordql - schema-agnostic query and ranking engine.

Compose filters, orderings, groupings, aggregates and hybrid
lexical + vector rankings over any sequence of typed records, addressing
fields by dot-separated path strings resolved when the query is built.
"""

from recordql.core.query_engine import (
    FieldPath,
    PathResolver,
    PredicateBuilder,
    QueryEngine,
    cosine_distance,
    cosine_similarity,
    normalize,
)
from recordql.boundary.sources import InMemoryQuerySource, QuerySource

__all__ = [
    "FieldPath",
    "InMemoryQuerySource",
    "PathResolver",
    "PredicateBuilder",
    "QueryEngine",
    "QuerySource",
    "cosine_distance",
    "cosine_similarity",
    "normalize",
]

__version__ = "0.1.0"
