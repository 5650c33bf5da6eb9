"""
Query engine module.

String-path query composition over typed records: path resolution,
predicate trees and their negation normal form, orderings, vector math,
hybrid ranking and aggregation, fronted by the immutable QueryEngine.
"""

from recordql.core.query_engine.aggregation import Aggregator, Grouping, select_fields
from recordql.core.query_engine.engine import QueryEngine
from recordql.core.query_engine.expressions import (
    And,
    Compare,
    ComparisonOperator,
    Constant,
    Expression,
    FieldRef,
    Not,
    Or,
    Predicate,
)
from recordql.core.query_engine.negation import NegationNormalizer, normalize
from recordql.core.query_engine.ordering import Ordering, OrderingBuilder
from recordql.core.query_engine.path_resolver import (
    FieldPath,
    PathResolver,
    ValueKind,
    register_shape,
    resolve_path,
)
from recordql.core.query_engine.predicates import PredicateBuilder
from recordql.core.query_engine.ranking import HybridRanker
from recordql.core.query_engine.vector_math import MAX_DISTANCE, cosine_distance, cosine_similarity

__all__ = [
    # Facade
    "QueryEngine",
    # Paths
    "FieldPath",
    "PathResolver",
    "ValueKind",
    "register_shape",
    "resolve_path",
    # Predicates
    "And",
    "Compare",
    "ComparisonOperator",
    "Constant",
    "Expression",
    "FieldRef",
    "Not",
    "Or",
    "Predicate",
    "PredicateBuilder",
    "NegationNormalizer",
    "normalize",
    # Ordering and ranking
    "Ordering",
    "OrderingBuilder",
    "HybridRanker",
    # Aggregation
    "Aggregator",
    "Grouping",
    "select_fields",
    # Vector math
    "MAX_DISTANCE",
    "cosine_distance",
    "cosine_similarity",
]
