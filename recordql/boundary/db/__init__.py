"""
Database boundary layer: ORM building blocks for queryable models.

Exports:
  - Base: Declarative base
  - UUIDMixin, TimestampMixin, SoftDeleteMixin: Column mixins
  - VectorType: JSON-backed embedding column type

Dependencies: sqlalchemy
System role: Model foundations for SQLAlchemyQuerySource
"""

from recordql.boundary.db.base import Base, SoftDeleteMixin, TimestampMixin, UUIDMixin, VectorType

__all__ = [
    "Base",
    "SoftDeleteMixin",
    "TimestampMixin",
    "UUIDMixin",
    "VectorType",
]
