"""
Field path resolution.

Resolves dot-separated, case-insensitive field paths ("Address.City.Name")
against the static shape of an element type into an accessor chain and a
leaf value type. Shapes are read once per type from dataclasses, pydantic
models, TypedDicts, SQLAlchemy mapped classes or plain annotated classes,
and can be declared explicitly with ``register_shape`` for anything else.

Dependencies: pydantic, sqlalchemy, numpy
System role: Build-time field lookup for every query engine builder
"""

import dataclasses
import enum
import inspect
import logging
import types
import uuid
from collections.abc import Mapping, Sequence, Set
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Any, ClassVar, Union, get_args, get_origin, get_type_hints, is_typeddict

import numpy as np
from pydantic import BaseModel
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import Mapped, Mapper

from recordql.configs import get_settings
from recordql.core.exceptions import EvaluationError, ResolutionError, UnknownFieldError

logger = logging.getLogger(__name__)

_NONE_TYPE = type(None)


class ValueKind(str, enum.Enum):
    """Semantic category of a field's declared type."""

    TEXT = "text"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    UUID = "uuid"
    ENUM = "enum"
    VECTOR = "vector"
    COLLECTION = "collection"
    MAPPING = "mapping"
    OBJECT = "object"
    ANY = "any"

    @property
    def is_numeric(self) -> bool:
        return self in (ValueKind.INTEGER, ValueKind.FLOAT, ValueKind.DECIMAL)

    @property
    def is_comparable(self) -> bool:
        """Whether values of this kind support ``<``/``>``."""
        return self in _COMPARABLE_KINDS


_COMPARABLE_KINDS = frozenset({
    ValueKind.TEXT,
    ValueKind.INTEGER,
    ValueKind.FLOAT,
    ValueKind.DECIMAL,
    ValueKind.BOOLEAN,
    ValueKind.DATE,
    ValueKind.DATETIME,
    ValueKind.TIME,
    ValueKind.UUID,
    ValueKind.ANY,
})


@dataclass(frozen=True)
class FieldInfo:
    """A single field declared on a shape."""

    name: str
    declared_type: Any
    nullable: bool
    kind: ValueKind
    item_type: Any = None
    by_key: bool = False


@dataclass(frozen=True)
class AccessorStep:
    """One hop of a resolved path: read ``name`` from a ``host_type`` value."""

    name: str
    host_type: Any
    declared_type: Any
    nullable: bool
    kind: ValueKind
    item_type: Any = None
    by_key: bool = False

    def access(self, obj: Any) -> Any:
        if self.by_key:
            return obj[self.name]
        return getattr(obj, self.name)


@dataclass(frozen=True)
class FieldPath:
    """
    A path resolved against an element type.

    Attributes:
        root_type: Element type the path was resolved against
        steps: Accessor chain, one step per segment
    """

    root_type: Any
    steps: tuple[AccessorStep, ...]

    @property
    def segments(self) -> tuple[str, ...]:
        return tuple(step.name for step in self.steps)

    @property
    def text(self) -> str:
        return ".".join(self.segments)

    @property
    def leaf(self) -> AccessorStep:
        return self.steps[-1]

    @property
    def leaf_type(self) -> Any:
        return self.leaf.declared_type

    @property
    def leaf_kind(self) -> ValueKind:
        return self.leaf.kind

    @property
    def leaf_nullable(self) -> bool:
        return self.leaf.nullable

    @property
    def is_multi_hop(self) -> bool:
        return len(self.steps) > 1

    def prefixes(self) -> list["FieldPath"]:
        """Proper prefixes, shortest first ("a", "a.b" for "a.b.c")."""
        return [FieldPath(self.root_type, self.steps[:i]) for i in range(1, len(self.steps))]

    def get(self, item: Any, null_safe: bool = False) -> Any:
        """
        Read the leaf value from ``item``.

        Args:
            item: Record to read from
            null_safe: Return None when an intermediate hop is None instead of failing

        Returns:
            Any: Leaf value

        Raises:
            EvaluationError: If an intermediate hop is None and null_safe is False,
                or the record does not carry a declared field
        """
        current = item
        for index, step in enumerate(self.steps):
            if current is None:
                if null_safe:
                    return None
                reached = ".".join(self.segments[:index]) or "<element>"
                raise EvaluationError(
                    f"Cannot read '{self.text}': '{reached}' is None",
                    path=self.text,
                )
            try:
                current = step.access(current)
            except (AttributeError, KeyError, TypeError) as exc:
                raise EvaluationError(
                    f"Cannot read '{step.name}' from {type(current).__name__} while evaluating '{self.text}'",
                    path=self.text,
                ) from exc
        return current

    def __str__(self) -> str:
        return self.text


def unwrap_type(tp: Any) -> tuple[Any, bool]:
    """
    Strip Optional/Annotated/Mapped wrappers from a declared type.

    Returns:
        tuple: (inner type, nullable)
    """
    nullable = False
    while True:
        origin = get_origin(tp)
        if origin is Annotated:
            tp = get_args(tp)[0]
        elif origin is Mapped:
            tp = get_args(tp)[0]
        elif origin is Union or origin is types.UnionType:
            args = get_args(tp)
            remaining = tuple(arg for arg in args if arg is not _NONE_TYPE)
            nullable = nullable or len(remaining) != len(args)
            if len(remaining) == 1:
                tp = remaining[0]
            else:
                return Union[remaining], nullable
        else:
            return tp, nullable


def classify(tp: Any) -> tuple[ValueKind, Any]:
    """
    Classify an unwrapped declared type.

    Returns:
        tuple: (kind, item type for collections/vectors or None)
    """
    if tp is Any or tp is None or isinstance(tp, str):
        return ValueKind.ANY, None

    origin = get_origin(tp)
    if origin is Union:
        return ValueKind.ANY, None
    if origin is not None:
        args = get_args(tp)
        if origin is np.ndarray:
            return ValueKind.VECTOR, float
        if isinstance(origin, type) and issubclass(origin, Mapping):
            return ValueKind.MAPPING, None
        if isinstance(origin, type) and issubclass(origin, (Sequence, Set)) and not issubclass(origin, (str, bytes)):
            item_type = args[0] if args else Any
            item_type, _ = unwrap_type(item_type)
            if item_type is float and not issubclass(origin, Set):
                return ValueKind.VECTOR, float
            return ValueKind.COLLECTION, item_type
        return ValueKind.OBJECT, None

    if not isinstance(tp, type):
        return ValueKind.ANY, None
    if issubclass(tp, np.ndarray):
        return ValueKind.VECTOR, float
    if issubclass(tp, enum.Enum):
        return ValueKind.ENUM, None
    if issubclass(tp, bool):
        return ValueKind.BOOLEAN, None
    if issubclass(tp, int):
        return ValueKind.INTEGER, None
    if issubclass(tp, float):
        return ValueKind.FLOAT, None
    if issubclass(tp, Decimal):
        return ValueKind.DECIMAL, None
    if issubclass(tp, str):
        return ValueKind.TEXT, None
    if issubclass(tp, datetime):
        return ValueKind.DATETIME, None
    if issubclass(tp, date):
        return ValueKind.DATE, None
    if issubclass(tp, time):
        return ValueKind.TIME, None
    if issubclass(tp, uuid.UUID):
        return ValueKind.UUID, None
    if issubclass(tp, Mapping):
        return ValueKind.MAPPING, None
    if issubclass(tp, (list, tuple, set, frozenset)):
        return ValueKind.COLLECTION, Any
    return ValueKind.OBJECT, None


def _field(name: str, declared: Any, nullable: bool = False, by_key: bool = False) -> FieldInfo:
    inner, optional = unwrap_type(declared)
    kind, item_type = classify(inner)
    return FieldInfo(
        name=name,
        declared_type=inner,
        nullable=nullable or optional,
        kind=kind,
        item_type=item_type,
        by_key=by_key,
    )


def _safe_hints(cls: type) -> dict[str, Any]:
    try:
        return get_type_hints(cls)
    except (NameError, TypeError):
        # Unresolvable forward references: fall back to raw annotations
        hints: dict[str, Any] = {}
        for klass in reversed(cls.__mro__):
            hints.update(getattr(klass, "__annotations__", {}))
        return hints


def _mapper_for(cls: type) -> Mapper | None:
    try:
        mapper = sa_inspect(cls, raiseerr=False)
    except NoInspectionAvailable:
        return None
    return mapper if isinstance(mapper, Mapper) else None


def _mapped_fields(cls: type, mapper: Mapper) -> list[FieldInfo]:
    hints = _safe_hints(cls)
    fields: list[FieldInfo] = []
    for attr in mapper.column_attrs:
        column = attr.columns[0]
        declared = hints.get(attr.key)
        if declared is None:
            try:
                declared = column.type.python_type
            except NotImplementedError:
                declared = Any
        fields.append(_field(attr.key, declared, nullable=bool(getattr(column, "nullable", False))))
    for rel in mapper.relationships:
        target = rel.mapper.class_
        if rel.uselist:
            fields.append(FieldInfo(rel.key, list[target], False, ValueKind.COLLECTION, item_type=target))
        else:
            fields.append(FieldInfo(rel.key, target, True, ValueKind.OBJECT))
    return fields


def _property_fields(cls: type) -> list[FieldInfo]:
    fields = []
    for name, member in inspect.getmembers(cls, lambda m: isinstance(m, property)):
        if name.startswith("_") or member.fget is None:
            continue
        try:
            returns = get_type_hints(member.fget).get("return", Any)
        except (NameError, TypeError):
            returns = Any
        fields.append(_field(name, returns))
    return fields


def _introspect(cls: type) -> list[FieldInfo]:
    if isinstance(cls, type) and issubclass(cls, BaseModel):
        return [_field(name, info.annotation) for name, info in cls.model_fields.items()]
    if is_typeddict(cls):
        return [_field(name, tp, by_key=True) for name, tp in _safe_hints(cls).items()]
    if dataclasses.is_dataclass(cls):
        hints = _safe_hints(cls)
        fields = [_field(f.name, hints.get(f.name, f.type)) for f in dataclasses.fields(cls)]
        return fields + _property_fields(cls)
    mapper = _mapper_for(cls)
    if mapper is not None:
        return _mapped_fields(cls, mapper)
    if not isinstance(cls, type):
        return []
    hints = {k: v for k, v in _safe_hints(cls).items() if get_origin(v) is not ClassVar and v is not ClassVar}
    return [_field(name, tp) for name, tp in hints.items() if not name.startswith("_")] + _property_fields(cls)


_REGISTERED_SHAPES: dict[Any, tuple[FieldInfo, ...]] = {}
# Bumped on every registration; part of each resolver's cache key
_shape_version = 0


def register_shape(cls: Any, fields: Mapping[str, Any], by_key: bool = False) -> None:
    """
    Declare the field shape of a type that cannot be introspected.

    Args:
        cls: Element (or nested) type
        fields: Field name -> declared type (``Optional[...]`` marks nullable)
        by_key: Read fields with ``obj[name]`` instead of ``getattr``
    """
    global _shape_version
    _REGISTERED_SHAPES[cls] = tuple(_field(name, tp, by_key=by_key) for name, tp in fields.items())
    shape_fields.cache_clear()
    _shape_version += 1


@lru_cache(maxsize=None)
def shape_fields(cls: Any) -> tuple[dict[str, FieldInfo], dict[str, FieldInfo]]:
    """
    Fields of a type, keyed by exact and by lower-cased name.

    Built once per type; first declaration wins on case-insensitive clashes.
    """
    declared = _REGISTERED_SHAPES.get(cls)
    infos = list(declared) if declared is not None else _introspect(cls)
    exact: dict[str, FieldInfo] = {}
    folded: dict[str, FieldInfo] = {}
    for info in infos:
        exact.setdefault(info.name, info)
        folded.setdefault(info.name.lower(), info)
    return exact, folded


class PathResolver:
    """
    Resolves field paths against element shapes.

    Resolution is strict: the first unknown segment raises
    ``UnknownFieldError`` and nothing partially resolved is returned.
    Results are cached per (element type, path, shape registry version), so
    re-registering a shape is seen by every resolver; the cache only saves work.
    """

    def __init__(self, cache_size: int | None = None) -> None:
        size = get_settings().query_engine.path_cache_size if cache_size is None else cache_size
        self._resolve_cached = lru_cache(maxsize=size)(self._resolve) if size else self._resolve

    def resolve(self, element_type: Any, path: str) -> FieldPath:
        """
        Resolve ``path`` against ``element_type``.

        Args:
            element_type: Type whose static shape the path walks
            path: Dot-separated field path, case-insensitive

        Returns:
            FieldPath: Accessor chain and leaf type

        Raises:
            ResolutionError: If the path is empty or has an empty segment
            UnknownFieldError: If any segment is not declared on its hop's type
        """
        if not isinstance(path, str) or not path.strip():
            raise ResolutionError("Field path must be a non-empty string", path=path)
        return self._resolve_cached(element_type, path.strip(), _shape_version)

    def _resolve(self, element_type: Any, path: str, shape_version: int = 0) -> FieldPath:
        steps: list[AccessorStep] = []
        host: Any = element_type
        for segment in path.split("."):
            segment = segment.strip()
            if not segment:
                raise ResolutionError(f"Empty segment in field path '{path}'", path=path)
            exact, folded = shape_fields(host) if _is_host(host) else ({}, {})
            info = exact.get(segment) or folded.get(segment.lower())
            if info is None:
                raise UnknownFieldError(segment, host, path=path)
            steps.append(AccessorStep(
                name=info.name,
                host_type=host,
                declared_type=info.declared_type,
                nullable=info.nullable,
                kind=info.kind,
                item_type=info.item_type,
                by_key=info.by_key,
            ))
            host = info.declared_type
        logger.debug(
            "Resolved field path",
            extra={"field_path": path, "element_type": getattr(element_type, "__name__", str(element_type))},
        )
        return FieldPath(element_type, tuple(steps))


def _is_host(tp: Any) -> bool:
    if tp in _REGISTERED_SHAPES:
        return True
    kind, _ = classify(tp)
    return kind is ValueKind.OBJECT or is_typeddict(tp)


@lru_cache(maxsize=1)
def get_default_resolver() -> PathResolver:
    """Process-wide resolver sized from settings."""
    return PathResolver()


def resolve_path(element_type: Any, path: str) -> FieldPath:
    """Resolve ``path`` with the default resolver."""
    return get_default_resolver().resolve(element_type, path)
