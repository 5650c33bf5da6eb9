"""
Vector math.

Cosine distance/similarity between fixed-length numeric vectors.
Absent or mismatched vectors are not errors: they map to the maximal
distance sentinel so predicates and rankings stay total over partially
populated records.

Dependencies: numpy
System role: Numeric primitives for vector filters, orderings and hybrid ranking
"""

import math
from typing import Any

import numpy as np

# Largest float32, treated as "infinitely dissimilar"
MAX_DISTANCE = float(np.finfo(np.float32).max)


def _as_vector(values: Any) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).ravel()


def cosine_distance(a: Any, b: Any) -> float:
    """
    Cosine distance ``1 - dot(a, b) / (|a| * |b|)``.

    Args:
        a: First vector (sequence or ndarray), may be None
        b: Second vector (sequence or ndarray), may be None

    Returns:
        float: Distance in [0, 2]; 1.0 when either norm is zero;
        MAX_DISTANCE when either vector is None or lengths differ
    """
    if a is None or b is None or len(a) != len(b):
        return MAX_DISTANCE

    va = _as_vector(a)
    vb = _as_vector(b)
    if va.shape != vb.shape:
        return MAX_DISTANCE

    dot = float(np.dot(va, vb))
    norm_product = float(np.dot(va, va)) * float(np.dot(vb, vb))
    if norm_product == 0.0:
        return 1.0

    distance = 1.0 - dot / math.sqrt(norm_product)
    return min(max(distance, 0.0), 2.0)


def cosine_similarity(a: Any, b: Any) -> float:
    """``1 - cosine_distance(a, b)``."""
    return 1.0 - cosine_distance(a, b)
