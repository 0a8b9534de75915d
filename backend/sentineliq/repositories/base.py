"""Repository base for the harvest tables.

- Repositories are the only layer that talks to the store.
- Filters are plain mappings (column -> value, or column -> Filter) so callers
  never build SQL themselves.
- Each write runs in a SAVEPOINT: a failed insert rolls back only itself and
  the caller's unit of work stays usable.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Generic, Iterator, Mapping, Optional, TypeVar, Union

from sqlalchemy import ColumnElement, func, inspect, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import InstrumentedAttribute, Session
from sqlalchemy.sql import Select

from sentineliq.core.errors import (
    DuplicateRecordError,
    HarvestError,
    RecordNotFoundError,
    RepositoryError,
)


logger = logging.getLogger("sentineliq.repositories")

T = TypeVar("T")

# Rows returned when an offset is given without a limit.
DEFAULT_PAGE_SIZE = 1000


@dataclass(frozen=True, slots=True)
class Filter:
    """Column predicate; `operator` is one of OPERATORS."""

    operator: str
    value: Any


@dataclass(frozen=True, slots=True)
class Order:
    column: str
    ascending: bool = True


OPERATORS: dict[str, Callable[[InstrumentedAttribute, Any], ColumnElement[bool]]] = {
    "eq": lambda c, v: c == v,
    "neq": lambda c, v: c != v,
    "like": lambda c, v: c.like(v),
    "ilike": lambda c, v: c.ilike(v),
    "in": lambda c, v: c.in_(list(v)),
    "gte": lambda c, v: c >= v,
    "lte": lambda c, v: c <= v,
    "gt": lambda c, v: c > v,
    "lt": lambda c, v: c < v,
}

FilterValue = Union[Filter, Mapping[str, Any], Any]
Filters = Mapping[str, FilterValue]
OrderSpec = Union[str, Order, None]


class BaseRepository(Generic[T]):
    """Generic CRUD over one mapped table.

    Methods are coroutines so the crawlers can await them alongside network
    I/O; the session itself is a regular `Session` and statements run inline.
    """

    model: ClassVar[type]

    def __init__(self, session: Session) -> None:
        self._session = session
        self._columns: dict[str, InstrumentedAttribute] = {
            attr.key: getattr(self.model, attr.key) for attr in inspect(self.model).column_attrs
        }

    @property
    def table_name(self) -> str:
        return str(self.model.__tablename__)

    @contextmanager
    def _guard(self, op: str) -> Iterator[None]:
        """Log and wrap driver errors; domain errors pass through untouched."""
        try:
            yield
        except HarvestError:
            raise
        except IntegrityError as e:
            logger.warning("%s %s: integrity violation (%s)", op, self.table_name, type(e.orig).__name__)
            raise DuplicateRecordError(f"{op} {self.table_name}: duplicate value", table=self.table_name) from e
        except SQLAlchemyError as e:
            logger.error("%s %s failed: %s", op, self.table_name, e)
            raise RepositoryError(f"{op} {self.table_name} failed: {e}", table=self.table_name) from e

    def _column(self, name: str) -> InstrumentedAttribute:
        col = self._columns.get(name)
        if col is None:
            raise RepositoryError(f"Unknown column {name!r} for {self.table_name}.", table=self.table_name)
        return col

    def _predicate(self, name: str, value: FilterValue) -> ColumnElement[bool]:
        col = self._column(name)
        if isinstance(value, Mapping) and "operator" in value:
            value = Filter(operator=str(value["operator"]), value=value.get("value"))
        if isinstance(value, Filter):
            op = OPERATORS.get(value.operator)
            if op is None:
                raise RepositoryError(f"Unknown filter operator {value.operator!r}.", table=self.table_name)
            return op(col, value.value)
        return col == value

    def _apply_filters(self, stmt: Select[Any], filters: Optional[Filters]) -> Select[Any]:
        for name, value in (filters or {}).items():
            # None means "no constraint", also inside a Filter.
            if value is None or (isinstance(value, Filter) and value.value is None):
                continue
            stmt = stmt.where(self._predicate(name, value))
        return stmt

    def _apply_order(self, stmt: Select[Any], order: OrderSpec) -> Select[Any]:
        if order is None:
            return stmt
        if isinstance(order, str):
            order = Order(column=order)
        col = self._column(order.column)
        return stmt.order_by(col.asc() if order.ascending else col.desc())

    async def find_all(
        self,
        *,
        filters: Optional[Filters] = None,
        order: OrderSpec = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[T]:
        with self._guard("find_all"):
            stmt = self._apply_order(self._apply_filters(select(self.model), filters), order)
            if offset:
                stmt = stmt.offset(offset).limit(limit or DEFAULT_PAGE_SIZE)
            elif limit:
                stmt = stmt.limit(limit)
            rows = list(self._session.scalars(stmt).all())
        logger.debug("%d rows read from %s", len(rows), self.table_name)
        return rows

    async def find_by_id(self, id_: int) -> Optional[T]:
        with self._guard("find_by_id"):
            return self._session.get(self.model, id_)

    async def find_one(self, filters: Filters) -> Optional[T]:
        rows = await self.find_all(filters=filters, limit=1)
        return rows[0] if rows else None

    async def exists(self, filters: Filters) -> bool:
        with self._guard("exists"):
            stmt = self._apply_filters(select(self._column("id")), filters).limit(1)
            return self._session.execute(stmt).first() is not None

    async def count(self, filters: Optional[Filters] = None) -> int:
        with self._guard("count"):
            stmt = self._apply_filters(select(func.count()).select_from(self.model), filters)
            return int(self._session.execute(stmt).scalar_one())

    async def create(self, data: Mapping[str, Any]) -> T:
        with self._guard("create"):
            for key in data:
                self._column(key)
            obj = self.model(**dict(data))
            with self._session.begin_nested():
                self._session.add(obj)
        logger.debug("Row created in %s", self.table_name)
        return obj

    async def update(self, id_: int, data: Mapping[str, Any]) -> T:
        with self._guard("update"):
            obj = self._session.get(self.model, id_)
            if obj is None:
                raise RecordNotFoundError(f"No {self.table_name} row with id={id_}.", table=self.table_name)
            with self._session.begin_nested():
                for key, value in data.items():
                    self._column(key)
                    setattr(obj, key, value)
        return obj

    async def delete(self, id_: int) -> bool:
        with self._guard("delete"):
            obj = self._session.get(self.model, id_)
            if obj is None:
                return False
            with self._session.begin_nested():
                self._session.delete(obj)
        return True

    async def upsert(self, data: Mapping[str, Any], *, conflict_column: str = "url") -> T:
        """Update the row whose `conflict_column` matches, else insert."""
        if conflict_column not in data:
            raise RepositoryError(f"upsert needs a value for {conflict_column!r}.", table=self.table_name)
        existing = await self.find_one({conflict_column: data[conflict_column]})
        if existing is None:
            return await self.create(data)
        changes = {k: v for k, v in data.items() if k != conflict_column}
        return await self.update(getattr(existing, "id"), changes)
