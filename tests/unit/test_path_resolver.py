"""
Unit tests for field path resolution.

Tests case-insensitive lookup, strict failure on unknown hops, leaf type
classification across dataclasses, pydantic models, TypedDicts and
registered shapes, and runtime reads through the accessor chain.
Dependencies: pytest, pydantic, recordql.core.query_engine.path_resolver
System role: Path resolution validation
"""

from dataclasses import dataclass
from typing import Optional, TypedDict

import pytest
from pydantic import BaseModel

from recordql.core.exceptions import EvaluationError, ResolutionError, UnknownFieldError
from recordql.core.query_engine.path_resolver import PathResolver, ValueKind, register_shape


class Tag(BaseModel):
    label: str
    weight: float = 1.0


class Document(BaseModel):
    title: str
    tag: Optional[Tag] = None
    vector: list[float] = []


class Row(TypedDict):
    id: int
    name: str


@dataclass
class Flat:
    value: int


class Opaque:
    def __init__(self, code: str) -> None:
        self.code = code


class Reshaped:
    def __init__(self, x) -> None:
        self.x = x


@pytest.fixture
def resolver() -> PathResolver:
    """Provide an uncached resolver."""
    return PathResolver(cache_size=0)


class TestPathResolution:
    """Test suite for PathResolver.resolve()."""

    def test_resolves_nested_path_case_insensitively(self, resolver: PathResolver, person_type) -> None:
        """Test segments match declared names regardless of case."""
        # Act
        path = resolver.resolve(person_type, "ADDRESS.City.name")

        # Assert
        assert path.segments == ("address", "city", "name")
        assert path.leaf_kind is ValueKind.TEXT
        assert path.is_multi_hop

    def test_missing_first_hop_raises_unknown_field(self, resolver: PathResolver) -> None:
        """Test a shape without Address fails on the first segment."""
        # Act & Assert
        with pytest.raises(UnknownFieldError) as exc_info:
            resolver.resolve(Flat, "Address.City.Name")

        assert exc_info.value.segment == "Address"
        assert exc_info.value.host_type is Flat

    def test_missing_inner_hop_names_its_host(self, resolver: PathResolver, person_type) -> None:
        """Test the error reports the hop type where resolution stopped."""
        # Act & Assert
        with pytest.raises(UnknownFieldError) as exc_info:
            resolver.resolve(person_type, "address.zip")

        assert exc_info.value.segment == "zip"
        assert exc_info.value.host_type.__name__ == "Address"

    def test_scalar_hop_cannot_be_walked(self, resolver: PathResolver, person_type) -> None:
        """Test a path cannot continue past a string leaf."""
        # Act & Assert
        with pytest.raises(UnknownFieldError):
            resolver.resolve(person_type, "name.length")

    @pytest.mark.parametrize("path", ["", "   ", "address..city", "age."])
    def test_empty_path_or_segment_raises(self, resolver: PathResolver, person_type, path: str) -> None:
        """Test blank paths and blank segments are rejected."""
        # Act & Assert
        with pytest.raises(ResolutionError):
            resolver.resolve(person_type, path)

    @pytest.mark.parametrize(
        "path, kind, nullable",
        [
            ("age", ValueKind.INTEGER, False),
            ("score", ValueKind.FLOAT, False),
            ("nickname", ValueKind.TEXT, True),
            ("tags", ValueKind.COLLECTION, False),
            ("embedding", ValueKind.VECTOR, True),
            ("joined", ValueKind.DATETIME, True),
            ("is_active", ValueKind.BOOLEAN, False),
            ("address", ValueKind.OBJECT, True),
        ],
    )
    def test_leaf_kinds_of_dataclass_fields(self, resolver: PathResolver, person_type, path, kind, nullable) -> None:
        """Test declared types are classified and Optional marks nullable."""
        # Act
        field_path = resolver.resolve(person_type, path)

        # Assert
        assert field_path.leaf_kind is kind
        assert field_path.leaf_nullable is nullable

    def test_pydantic_model_fields(self, resolver: PathResolver) -> None:
        """Test pydantic models resolve through nested models."""
        # Act
        path = resolver.resolve(Document, "tag.weight")

        # Assert
        assert path.leaf_kind is ValueKind.FLOAT
        assert resolver.resolve(Document, "vector").leaf_kind is ValueKind.VECTOR

    def test_typeddict_fields_read_by_key(self, resolver: PathResolver) -> None:
        """Test TypedDict elements resolve and read like mappings."""
        # Arrange
        path = resolver.resolve(Row, "Name")

        # Act
        value = path.get({"id": 1, "name": "first"})

        # Assert
        assert value == "first"

    def test_registered_shape(self, resolver: PathResolver) -> None:
        """Test register_shape declares fields for classes without annotations."""
        # Arrange
        register_shape(Opaque, {"code": str})

        # Act
        path = resolver.resolve(Opaque, "CODE")

        # Assert
        assert path.leaf_kind is ValueKind.TEXT
        assert path.get(Opaque("x1")) == "x1"

    def test_cached_resolver_returns_same_path(self, person_type) -> None:
        """Test caching returns an equal path for repeated lookups."""
        # Arrange
        resolver = PathResolver(cache_size=16)

        # Act & Assert
        assert resolver.resolve(person_type, "address.city") == resolver.resolve(person_type, "address.city")

    def test_cached_resolver_sees_reregistered_shape(self) -> None:
        """Test re-registering a shape changes what an already warm cache resolves."""
        # Arrange
        resolver = PathResolver(cache_size=16)
        register_shape(Reshaped, {"x": int})
        assert resolver.resolve(Reshaped, "x").leaf_type is int

        # Act
        register_shape(Reshaped, {"x": str})

        # Assert
        path = resolver.resolve(Reshaped, "x")
        assert path.leaf_type is str
        assert path.leaf_kind is ValueKind.TEXT


class TestFieldPathGet:
    """Test suite for FieldPath.get()."""

    def test_reads_nested_value(self, resolver: PathResolver, people, person_type) -> None:
        """Test reading through every hop."""
        # Act
        value = resolver.resolve(person_type, "address.city.name").get(people[0])

        # Assert
        assert value == "Paris"

    def test_none_hop_raises_when_not_null_safe(self, resolver: PathResolver, people, person_type) -> None:
        """Test a strict read fails on a None intermediate hop."""
        # Arrange
        path = resolver.resolve(person_type, "address.city.name")

        # Act & Assert
        with pytest.raises(EvaluationError):
            path.get(people[3])

    def test_none_hop_returns_none_when_null_safe(self, resolver: PathResolver, people, person_type) -> None:
        """Test a null-safe read stops at the first None hop."""
        # Arrange
        path = resolver.resolve(person_type, "address.city.name")

        # Act & Assert
        assert path.get(people[2], null_safe=True) is None
        assert path.get(people[3], null_safe=True) is None

    def test_prefixes_are_shortest_first(self, resolver: PathResolver, person_type) -> None:
        """Test prefixes cover each proper prefix of the path."""
        # Act
        prefixes = resolver.resolve(person_type, "address.city.name").prefixes()

        # Assert
        assert [p.text for p in prefixes] == ["address", "address.city"]
