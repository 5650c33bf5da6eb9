"""
Shared test fixtures and configuration for entire test suite.

Provides: Sample record types and data, engines over them, mock sources,
in-memory async SQLite database
Dependencies: pytest, sqlalchemy, aiosqlite
System role: Test infrastructure and fixture management
"""

from dataclasses import dataclass, field
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from recordql.boundary.sources.base import QuerySource
from recordql.core.query_engine.engine import QueryEngine


@dataclass
class City:
    name: str
    population: int = 0


@dataclass
class Address:
    street: str
    city: City | None = None


@dataclass
class Person:
    name: str
    age: int
    score: float = 0.0
    nickname: str | None = None
    address: Address | None = None
    tags: list[str] = field(default_factory=list)
    embedding: list[float] | None = None
    joined: datetime | None = None
    is_active: bool = True
    is_archived: bool = False


@pytest.fixture
def person_type() -> type[Person]:
    """Record type the sample people are built from."""
    return Person


@pytest.fixture
def people() -> list[Person]:
    """
    Sample people covering nested, missing and duplicate values.

    Returns:
        list[Person]: Five people in insertion order
    """
    paris = City("Paris", 2_100_000)
    lyon = City("Lyon", 520_000)
    return [
        Person(
            "alice", 17, score=0.9, nickname="Al",
            address=Address("1 Rue A", paris), tags=["admin", "ops"],
            embedding=[1.0, 0.0], joined=datetime(2024, 1, 31, 9, 30),
        ),
        Person(
            "bob", 18, score=0.2,
            address=Address("2 Rue B", lyon), tags=["ops"],
            embedding=[0.0, 1.0], joined=datetime(2024, 2, 1, 8, 0),
        ),
        Person(
            "carol", 30, score=0.5, nickname="Caz",
            address=Address("3 Rue C", None), embedding=[0.7, 0.7],
            is_active=False,
        ),
        Person("dave", 31, score=0.5, embedding=None, is_archived=True),
        Person("Eve", 30, score=-0.4, address=Address("5 Rue E", paris), embedding=[1.0, 0.0, 0.0]),
    ]


@pytest.fixture
def people_engine(people: list[Person]) -> QueryEngine[Person]:
    """QueryEngine over the sample people."""
    return QueryEngine.from_items(people, Person)


@pytest.fixture
def mock_source() -> MagicMock:
    """
    Create mock QuerySource over Person.

    Returns:
        MagicMock: Source spec'd on QuerySource with element_type set
    """
    source = MagicMock(spec=QuerySource)
    source.element_type = Person
    return source


@pytest.fixture
async def test_async_db():
    """
    Create in-memory SQLite async database for testing.

    Yields:
        AsyncSession: Test database session with cleanup (lazy imported so unit tests never load aiosqlite)
    """
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import StaticPool
    from recordql.boundary.db.base import Base

    # Use SQLite in-memory database for tests
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()

    # Cleanup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def test_sync_db():
    """
    Create in-memory SQLite sync database for testing.

    Yields:
        Session: Test database session with cleanup
    """
    from sqlalchemy import create_engine
    from sqlalchemy.orm import Session
    from sqlalchemy.pool import StaticPool
    from recordql.boundary.db.base import Base

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    with Session(engine, expire_on_commit=False) as session:
        yield session
        session.rollback()

    Base.metadata.drop_all(engine)
    engine.dispose()
