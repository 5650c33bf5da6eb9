"""
Constant conversion.

Converts caller-supplied constants to a resolved leaf's declared type
using pydantic's lax validation (``"42"`` -> ``42``, ``"2024-01-31"`` ->
``date``, enum values, UUID strings), so invalid constants fail at build
time rather than inside the backing store.

Dependencies: pydantic
System role: Build-time value coercion for predicate constants
"""

import uuid
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any

import numpy as np
from pydantic import TypeAdapter, ValidationError
from pydantic.errors import PydanticSchemaGenerationError

from recordql.core.exceptions import ConversionError
from recordql.core.query_engine.path_resolver import FieldPath, ValueKind, classify


@lru_cache(maxsize=256)
def _adapter(target_type: Any) -> TypeAdapter:
    return TypeAdapter(target_type)


def convert_to(value: Any, target_type: Any, kind: ValueKind, path: str | None = None) -> Any:
    """
    Convert ``value`` to ``target_type``.

    Args:
        value: Constant supplied by the caller
        target_type: Declared leaf type
        kind: Leaf value kind
        path: Field path, for error messages

    Returns:
        Any: Converted value

    Raises:
        ConversionError: If the value cannot be represented as the target type
    """
    if kind is ValueKind.ANY:
        return value
    if kind is ValueKind.TEXT and isinstance(value, (int, float, Decimal, uuid.UUID)) and not isinstance(value, bool):
        return str(value)
    if kind is ValueKind.TEXT and isinstance(value, Enum):
        return str(value.value)
    if kind is ValueKind.VECTOR:
        try:
            return tuple(float(x) for x in np.asarray(value, dtype=np.float64).ravel())
        except (TypeError, ValueError) as exc:
            raise ConversionError(value, target_type, path) from exc
    if kind is ValueKind.OBJECT:
        if isinstance(target_type, type) and isinstance(value, target_type):
            return value
        raise ConversionError(value, target_type, path)

    try:
        return _adapter(target_type).validate_python(value)
    except (ValidationError, PydanticSchemaGenerationError, TypeError) as exc:
        raise ConversionError(value, target_type, path) from exc


def convert_for_path(value: Any, field_path: FieldPath) -> Any:
    """
    Convert ``value`` to the leaf type of ``field_path``.

    ``None`` is accepted only for nullable leaves.
    """
    if value is None:
        if field_path.leaf_nullable or field_path.leaf_kind in (ValueKind.ANY, ValueKind.OBJECT):
            return None
        raise ConversionError(value, field_path.leaf_type, field_path.text)
    return convert_to(value, field_path.leaf_type, field_path.leaf_kind, field_path.text)


def convert_item(value: Any, field_path: FieldPath) -> Any:
    """Convert ``value`` to the element type of a collection leaf."""
    item_type = field_path.leaf.item_type
    kind, _ = classify(item_type)
    if value is None:
        return None
    return convert_to(value, item_type, kind, field_path.text)
