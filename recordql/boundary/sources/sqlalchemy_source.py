"""
SQLAlchemy query source.

Accumulates a ``Select`` over one mapped model: filters and orderings are
translated into SQL when they are applied, so an untranslatable node fails
before any statement runs. skip/take fold into one OFFSET/LIMIT pair;
filtering or ordering after pagination first wraps the paged statement in
a subquery so steps keep their call order.

Works with a sync ``Session`` or an ``AsyncSession``. Sync terminals on an
async session raise SyncMaterializationError; async terminals on a sync
session run the sync path.

Dependencies: sqlalchemy, recordql.core.query_engine
System role: Database-backed collaborator for QueryEngine
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import QueryableAttribute, Session, aliased, selectinload

from recordql.boundary.db.base import Base
from recordql.boundary.sources.base import QuerySource
from recordql.boundary.sources.sql_translator import SQLTranslator, is_relationship
from recordql.core.exceptions import NotTranslatableError, ResolutionError, SyncMaterializationError
from recordql.core.query_engine.aggregation import Aggregator
from recordql.core.query_engine.expressions import Expression, Predicate
from recordql.core.query_engine.ordering import Ordering
from recordql.core.query_engine.path_resolver import PathResolver, get_default_resolver
from recordql.observability.log_utils import safe_log_value

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


@dataclass(frozen=True)
class _StatementState:
    statement: Select
    entity: Any
    orderings: tuple[Ordering, ...] = ()
    offset: int = 0
    limit: int | None = None

    @property
    def paged(self) -> bool:
        return self.offset > 0 or self.limit is not None


class SQLAlchemyQuerySource(QuerySource[ModelT], Generic[ModelT]):
    """
    Query source over a mapped model.

    Args:
        session: Sync Session or AsyncSession the statement runs on
        model: Mapped class to select
        includes: Relationship paths to eager load with selectinload,
            e.g. ``("address", "address.city")``
        resolver: Path resolver for ``includes``

    Usage:
        source = SQLAlchemyQuerySource(session, PersonModel, includes=("address",))
        people = await QueryEngine(source).where_greater_than("age", 30).ato_list()
    """

    def __init__(
        self,
        session: Session | AsyncSession,
        model: type[ModelT],
        includes: Sequence[str] = (),
        resolver: PathResolver | None = None,
    ) -> None:
        self._session = session
        self._model = model
        self._resolver = resolver or get_default_resolver()
        self._includes = tuple(includes)
        for path in self._includes:
            self._include_paths(path)
        self._state = _StatementState(select(model), model)

    @property
    def element_type(self) -> type[ModelT]:
        return self._model

    @property
    def is_async(self) -> bool:
        return isinstance(self._session, AsyncSession)

    def _with(self, state: _StatementState) -> "SQLAlchemyQuerySource[ModelT]":
        source = SQLAlchemyQuerySource.__new__(SQLAlchemyQuerySource)
        source._session = self._session
        source._model = self._model
        source._resolver = self._resolver
        source._includes = self._includes
        source._state = state
        return source

    # Statement building

    def _paged_statement(self, state: _StatementState) -> Select:
        statement = state.statement
        if state.offset:
            statement = statement.offset(state.offset)
        if state.limit is not None:
            statement = statement.limit(state.limit)
        return statement

    def _unpaged(self) -> _StatementState:
        """Current state, wrapped in a subquery when OFFSET/LIMIT is pending."""
        state = self._state
        if not state.paged:
            return state
        entity = aliased(self._model, self._paged_statement(state).subquery())
        translator = SQLTranslator(entity)
        statement = select(entity)
        if state.orderings:
            statement = statement.order_by(*(translator.ordering(o) for o in state.orderings))
        logger.debug("Wrapped paginated statement in a subquery", extra={"model": self._model.__name__})
        return _StatementState(statement, entity, state.orderings)

    def filter(self, predicate: Predicate) -> "SQLAlchemyQuerySource[ModelT]":
        state = self._unpaged()
        clause = SQLTranslator(state.entity).predicate(predicate)
        return self._with(replace(state, statement=state.statement.where(clause)))

    def order_by(self, ordering: Ordering) -> "SQLAlchemyQuerySource[ModelT]":
        state = self._unpaged()
        translator = SQLTranslator(state.entity)
        clause = translator.ordering(ordering)
        if not ordering.primary:
            return self._with(replace(
                state,
                statement=state.statement.order_by(clause),
                orderings=state.orderings + (ordering,),
            ))
        # A new primary key re-sorts stably: earlier keys become tie-breakers
        orderings = (ordering,) + state.orderings
        statement = state.statement.order_by(None).order_by(*(translator.ordering(o) for o in orderings))
        return self._with(replace(state, statement=statement, orderings=orderings))

    def skip(self, count: int) -> "SQLAlchemyQuerySource[ModelT]":
        state = self._state
        limit = None if state.limit is None else max(state.limit - count, 0)
        return self._with(replace(state, offset=state.offset + count, limit=limit))

    def take(self, count: int) -> "SQLAlchemyQuerySource[ModelT]":
        state = self._state
        limit = count if state.limit is None else min(state.limit, count)
        return self._with(replace(state, limit=limit))

    def _include_paths(self, path: str) -> list[Any]:
        field_path = self._resolver.resolve(self._model, path)
        hosts = [self._model] + [step.declared_type for step in field_path.steps[:-1]]
        attributes = []
        for host, step in zip(hosts, field_path.steps):
            attribute = getattr(host, step.name, None)
            if not isinstance(attribute, QueryableAttribute) or not is_relationship(attribute):
                raise ResolutionError(f"Include path '{path}' must name relationships only", path=path)
            attributes.append(attribute)
        return attributes

    def _load_options(self, entity: Any) -> list[Any]:
        options = []
        for path in self._includes:
            attributes = self._include_paths(path)
            first = getattr(entity, attributes[0].key)
            option = selectinload(first)
            for attribute in attributes[1:]:
                option = option.selectinload(attribute)
            options.append(option)
        return options

    def statement(self) -> Select:
        """Final SELECT including pagination and eager loads."""
        statement = self._paged_statement(self._state)
        options = self._load_options(self._state.entity)
        return statement.options(*options) if options else statement

    # Execution

    def _require_sync(self, operation: str) -> Session:
        if self.is_async:
            raise SyncMaterializationError(
                f"{operation}() cannot run on an AsyncSession; use the async variant",
                operation=operation,
            )
        return self._session

    def materialize(self) -> list[ModelT]:
        session = self._require_sync("materialize")
        statement = self.statement()
        logger.debug("Executing query", extra={"statement": safe_log_value(str(statement))})
        result = session.execute(statement)
        return list(result.scalars().unique().all())

    async def amaterialize(self) -> list[ModelT]:
        if not self.is_async:
            return self.materialize()
        statement = self.statement()
        logger.debug("Executing query", extra={"statement": safe_log_value(str(statement))})
        result = await self._session.execute(statement)
        return list(result.scalars().unique().all())

    def _count_statement(self) -> Select:
        return select(func.count()).select_from(self._paged_statement(self._state).subquery())

    def count(self) -> int:
        session = self._require_sync("count")
        return int(session.scalar(self._count_statement()) or 0)

    async def acount(self) -> int:
        if not self.is_async:
            return self.count()
        return int(await self._session.scalar(self._count_statement()) or 0)

    def _aggregate_statement(self, aggregate: Any, key: Expression) -> Select:
        entity = aliased(self._model, self._paged_statement(self._state).subquery())
        return select(aggregate(SQLTranslator(entity).column(key)))

    def _pushdown(self, aggregate: Any, key: Expression) -> Select | None:
        try:
            return self._aggregate_statement(aggregate, key)
        except NotTranslatableError:
            logger.debug("Aggregating in memory", extra={"key": safe_log_value(key)})
            return None

    def sum(self, key: Expression, result_type: type) -> Any:
        statement = self._pushdown(func.sum, key)
        if statement is None:
            return super().sum(key, result_type)
        value = self._require_sync("sum").scalar(statement)
        return Aggregator().coerce(0 if value is None else value, result_type)

    async def asum(self, key: Expression, result_type: type) -> Any:
        if not self.is_async:
            return self.sum(key, result_type)
        statement = self._pushdown(func.sum, key)
        if statement is None:
            return await super().asum(key, result_type)
        value = await self._session.scalar(statement)
        return Aggregator().coerce(0 if value is None else value, result_type)

    def average(self, key: Expression, result_type: type) -> Any:
        statement = self._pushdown(func.avg, key)
        if statement is None:
            return super().average(key, result_type)
        return Aggregator().coerce(self._require_sync("average").scalar(statement), result_type)

    async def aaverage(self, key: Expression, result_type: type) -> Any:
        if not self.is_async:
            return self.average(key, result_type)
        statement = self._pushdown(func.avg, key)
        if statement is None:
            return await super().aaverage(key, result_type)
        return Aggregator().coerce(await self._session.scalar(statement), result_type)

    def __repr__(self) -> str:
        return f"SQLAlchemyQuerySource({self._model.__name__}, async={self.is_async})"
