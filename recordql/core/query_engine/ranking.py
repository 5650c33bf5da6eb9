"""
In-memory ranking.

Hybrid ranking blends an externally supplied text relevance score with
cosine similarity to a query vector; score ranking sorts by any caller
scorer. Neither can be expressed by a backing store, so both run over an
already materialized sequence and return a plain list.

Dependencies: recordql.core.query_engine.vector_math, recordql.observability
System role: Terminal ranking over materialized results
"""

import logging
from collections.abc import Callable, Collection, Iterable, Mapping, Sequence
from typing import Any, TypeVar

from recordql.core.exceptions import EvaluationError
from recordql.core.query_engine.expressions import Expression
from recordql.core.query_engine.vector_math import cosine_similarity
from recordql.observability.log_utils import log_with_context

logger = logging.getLogger(__name__)

T = TypeVar("T")

ScoreFunction = Callable[[Any], float] | Expression


def as_scorer(score: ScoreFunction) -> Callable[[Any], float]:
    """Accept either a value expression or a plain callable."""
    if isinstance(score, Expression):
        return score.evaluate
    if not callable(score):
        raise TypeError(f"Score must be callable or an Expression, got {type(score).__name__}")
    return score


def _float_score(scorer: Callable[[Any], Any], item: Any) -> float:
    value = scorer(item)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise EvaluationError(f"Score {value!r} is not a number") from exc


class HybridRanker:
    """
    Combines text and vector relevance into one score.

    score = text_weight * text_score(item)
          + vector_weight * cosine_similarity(vector(item), query_vector)
    """

    def __init__(self, text_weight: float = 0.5, vector_weight: float = 0.5) -> None:
        self.text_weight = float(text_weight)
        self.vector_weight = float(vector_weight)

    def score(
        self,
        item: Any,
        text_score: Callable[[Any], float],
        vector_of: Callable[[Any], Any],
        query_vector: Sequence[float],
    ) -> float:
        text = _float_score(text_score, item)
        similarity = cosine_similarity(vector_of(item), query_vector)
        return self.text_weight * text + self.vector_weight * similarity

    def rank(
        self,
        items: Iterable[T],
        text_score: ScoreFunction,
        vector_of: Callable[[T], Any],
        query_vector: Sequence[float],
    ) -> list[T]:
        """Items sorted by descending combined score; ties keep input order."""
        scorer = as_scorer(text_score)
        scored = [(self.score(item, scorer, vector_of, query_vector), item) for item in items]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        log_with_context(
            logger,
            logging.DEBUG,
            "Hybrid ranking complete",
            item_count=len(scored),
            text_weight=self.text_weight,
            vector_weight=self.vector_weight,
        )
        return [item for _, item in scored]


def rank_by_score(items: Iterable[T], score: ScoreFunction, descending: bool = True) -> list[T]:
    scorer = as_scorer(score)
    scored = [(_float_score(scorer, item), item) for item in items]
    scored.sort(key=lambda pair: pair[0], reverse=descending)
    return [item for _, item in scored]


def rank_by_external_scores(
    items: Iterable[T],
    matching_keys: Collection[Any],
    key_of: Callable[[T], Any],
    external_scores: Mapping[Any, float],
) -> list[T]:
    """
    Keep items whose key an external full-text engine matched, best first.

    Items without an external score rank as 0.0.
    """
    keys = set(matching_keys)
    matched = [item for item in items if key_of(item) in keys]
    matched.sort(key=lambda item: float(external_scores.get(key_of(item), 0.0)), reverse=True)
    log_with_context(logger, logging.DEBUG, "External matches ranked", match_count=len(keys), item_count=len(matched))
    return matched
