"""
Query sources: the collaborators a QueryEngine runs against.

Exports:
  - QuerySource: Abstract lazily evaluated sequence
  - InMemoryQuerySource: Snapshot of Python objects
  - SQLAlchemyQuerySource: Select statement over a mapped model
  - SQLTranslator: Predicate tree -> SQLAlchemy clause

Dependencies: sqlalchemy, recordql.core.query_engine
System role: Boundary between query composition and data stores
"""

from recordql.boundary.sources.base import QuerySource
from recordql.boundary.sources.memory_source import InMemoryQuerySource
from recordql.boundary.sources.sql_translator import SQLTranslator
from recordql.boundary.sources.sqlalchemy_source import SQLAlchemyQuerySource

__all__ = [
    "InMemoryQuerySource",
    "QuerySource",
    "SQLAlchemyQuerySource",
    "SQLTranslator",
]
