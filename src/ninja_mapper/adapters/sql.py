"""SQLAlchemy adapter implementing the Adapter protocol."""

from __future__ import annotations

import datetime
import logging
import types
import typing
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, NoSuchTableError, OperationalError, SQLAlchemyError

from ninja_mapper.adapters import ID_FIELD, _new_id, _split_id
from ninja_mapper.entity import Entity
from ninja_mapper.exceptions import (
    ConfigurationError,
    ConnectionFailedError,
    DuplicateEntityError,
    PersistenceError,
    QueryError,
    TransactionError,
)
from ninja_mapper.query import And, Compare, Not, Op, Or, Predicate, Query, Sort

logger = logging.getLogger(__name__)

# bool before int: bool is an int subclass.
_PYTHON_TYPE_MAP: list[tuple[type, type[sa.types.TypeEngine]]] = [
    (bool, sa.Boolean),
    (int, sa.Integer),
    (float, sa.Float),
    (str, sa.String),
    (datetime.datetime, sa.DateTime),
    (datetime.date, sa.Date),
    (bytes, sa.LargeBinary),
    (dict, sa.JSON),
    (list, sa.JSON),
]


def _column_type(annotation: Any) -> sa.types.TypeEngine:
    """Map a pydantic field annotation to a SQLAlchemy column type.

    ``X | None`` unwraps to ``X``; anything unrecognised is stored as a string.
    """
    origin = typing.get_origin(annotation)
    if origin in (typing.Union, types.UnionType):
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        annotation = args[0] if len(args) == 1 else Any
        origin = typing.get_origin(annotation)
    target = origin or annotation
    if isinstance(target, type):
        for py_type, sa_type in _PYTHON_TYPE_MAP:
            if issubclass(target, py_type):
                return sa_type(255) if sa_type is sa.String else sa_type()
    return sa.String(255)


def _build_table(name: str, entity: type[Entity], metadata: sa.MetaData) -> sa.Table:
    """Build a SQLAlchemy Table whose columns mirror the entity's attributes."""
    columns: list[sa.Column] = []
    for field_name in entity.attributes():
        annotation = entity.model_fields[field_name].annotation
        if field_name == ID_FIELD:
            columns.append(sa.Column(ID_FIELD, _column_type(annotation), primary_key=True))
        else:
            columns.append(sa.Column(field_name, _column_type(annotation), nullable=True))
    return sa.Table(name, metadata, *columns)


def _is_integer_key(table: sa.Table) -> bool:
    return isinstance(table.c[ID_FIELD].type, sa.Integer)


def _key_fits(table: sa.Table, id: Any) -> bool:
    """False when *id* cannot be a value of the key column's Python type.

    Such a key matches no row, and some drivers refuse to bind it at all.
    """
    try:
        python_type = table.c[ID_FIELD].type.python_type
    except NotImplementedError:
        return True
    if isinstance(id, bool) and python_type is not bool:
        return False
    return isinstance(id, python_type)


class SQLAdapter:
    """SQL adapter backed by a SQLAlchemy engine.

    Each collection maps to a table with an ``id`` primary key. Tables are
    either created up front with :meth:`ensure_table` or reflected from the
    database on first use. Integer keys are assigned by the database; any
    other key type gets a generated hex id when the caller supplies none.
    """

    def __init__(self, engine: sa.Engine) -> None:
        self._engine = engine
        self._metadata = sa.MetaData()
        self._tables: dict[str, sa.Table] = {}

    @property
    def engine(self) -> sa.Engine:
        return self._engine

    def ensure_table(self, collection: str, entity: type[Entity]) -> sa.Table:
        """Create the collection's table from the entity's attributes if it does not exist."""
        table = self._tables.get(collection)
        if table is None:
            table = _build_table(collection, entity, self._metadata)
            self._tables[collection] = table
        try:
            table.create(self._engine, checkfirst=True)
        except OperationalError as exc:
            logger.error("SQL ensure_table failed for %s: %s", collection, type(exc).__name__)
            raise ConnectionFailedError(
                collection=collection,
                operation="ensure_table",
                detail="Database connection failed while creating the table.",
                cause=exc,
            ) from exc
        return table

    def _table(self, collection: str, operation: str) -> sa.Table:
        """Return the table for *collection*, reflecting it on first access."""
        if collection in self._tables:
            return self._tables[collection]
        try:
            table = sa.Table(collection, self._metadata, autoload_with=self._engine)
        except NoSuchTableError as exc:
            raise ConfigurationError(
                collection=collection,
                operation=operation,
                detail="Table does not exist. Create it with ensure_table() or a migration.",
                cause=exc,
            ) from exc
        except OperationalError as exc:
            logger.error("SQL reflection failed for %s: %s", collection, type(exc).__name__)
            raise ConnectionFailedError(
                collection=collection,
                operation=operation,
                detail="Database connection failed during table reflection.",
                cause=exc,
            ) from exc
        if ID_FIELD not in table.c:
            raise ConfigurationError(
                collection=collection,
                operation=operation,
                detail=f"Table has no '{ID_FIELD}' column.",
            )
        self._tables[collection] = table
        return table

    def _read(self, collection: str, operation: str, stmt: Any) -> list[dict[str, Any]]:
        try:
            with self._engine.connect() as conn:
                return [dict(row) for row in conn.execute(stmt).mappings().all()]
        except OperationalError as exc:
            logger.error("SQL %s failed for %s: %s", operation, collection, type(exc).__name__)
            raise ConnectionFailedError(
                collection=collection,
                operation=operation,
                detail="Database connection failed during read.",
                cause=exc,
            ) from exc
        except SQLAlchemyError as exc:
            logger.error("SQL %s failed for %s: %s", operation, collection, type(exc).__name__)
            raise QueryError(
                collection=collection,
                operation=operation,
                detail="Query execution failed.",
                cause=exc,
            ) from exc

    def insert(self, collection: str, attributes: dict[str, Any]) -> Any:
        table = self._table(collection, "create")
        record_id, values = _split_id(attributes)
        if record_id is None and not _is_integer_key(table):
            record_id = _new_id()
        _unmapped_columns(table, values, collection, "create")
        row = dict(values)
        if record_id is not None:
            row[ID_FIELD] = record_id
        try:
            with self._engine.begin() as conn:
                result = conn.execute(table.insert().values(**row))
                if record_id is None:
                    record_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            logger.error("SQL create failed for %s: duplicate or constraint violation", collection)
            raise DuplicateEntityError(
                collection=collection,
                operation="create",
                detail="A record with the same key or unique constraint already exists.",
                cause=exc,
            ) from exc
        except OperationalError as exc:
            logger.error("SQL create failed for %s: %s", collection, type(exc).__name__)
            raise ConnectionFailedError(
                collection=collection,
                operation="create",
                detail="Database connection failed during insert.",
                cause=exc,
            ) from exc
        except SQLAlchemyError as exc:
            logger.error("SQL create failed for %s: %s", collection, type(exc).__name__)
            raise TransactionError(
                collection=collection,
                operation="create",
                detail="Insert transaction failed.",
                cause=exc,
            ) from exc
        return record_id

    def update(self, collection: str, id: Any, attributes: dict[str, Any]) -> bool:
        table = self._table(collection, "update")
        if not _key_fits(table, id):
            return False
        _, values = _split_id(attributes)
        _unmapped_columns(table, values, collection, "update")
        row = dict(values)
        if not row:
            return self.find_by_id(collection, id) is not None
        stmt = table.update().where(table.c[ID_FIELD] == id).values(**row)
        try:
            with self._engine.begin() as conn:
                result = conn.execute(stmt)
                return result.rowcount > 0
        except IntegrityError as exc:
            logger.error("SQL update failed for %s (id=%s): constraint violation", collection, id)
            raise DuplicateEntityError(
                collection=collection,
                operation="update",
                detail="Update violates a uniqueness constraint.",
                cause=exc,
            ) from exc
        except OperationalError as exc:
            logger.error("SQL update failed for %s (id=%s): %s", collection, id, type(exc).__name__)
            raise ConnectionFailedError(
                collection=collection,
                operation="update",
                detail="Database connection failed during update.",
                cause=exc,
            ) from exc
        except SQLAlchemyError as exc:
            logger.error("SQL update failed for %s (id=%s): %s", collection, id, type(exc).__name__)
            raise TransactionError(
                collection=collection,
                operation="update",
                detail="Update transaction failed.",
                cause=exc,
            ) from exc

    def delete(self, collection: str, id: Any) -> bool:
        table = self._table(collection, "delete")
        if not _key_fits(table, id):
            return False
        stmt = table.delete().where(table.c[ID_FIELD] == id)
        try:
            with self._engine.begin() as conn:
                result = conn.execute(stmt)
                return result.rowcount > 0
        except OperationalError as exc:
            logger.error("SQL delete failed for %s (id=%s): %s", collection, id, type(exc).__name__)
            raise ConnectionFailedError(
                collection=collection,
                operation="delete",
                detail="Database connection failed during delete.",
                cause=exc,
            ) from exc
        except SQLAlchemyError as exc:
            logger.error("SQL delete failed for %s (id=%s): %s", collection, id, type(exc).__name__)
            raise PersistenceError(
                collection=collection,
                operation="delete",
                detail="Delete operation failed.",
                cause=exc,
            ) from exc

    def find_by_id(self, collection: str, id: Any) -> dict[str, Any] | None:
        table = self._table(collection, "find")
        if not _key_fits(table, id):
            return None
        rows = self._read(collection, "find", table.select().where(table.c[ID_FIELD] == id).limit(1))
        return rows[0] if rows else None

    def scan(self, collection: str) -> list[dict[str, Any]]:
        table = self._table(collection, "all")
        return self._read(collection, "all", table.select())

    def first(self, collection: str, sort_key: str) -> dict[str, Any] | None:
        rows = self.run(collection, Query(ordering=(Sort(str(sort_key)),), max_results=1))
        return rows[0] if rows else None

    def last(self, collection: str, sort_key: str) -> dict[str, Any] | None:
        rows = self.run(collection, Query(ordering=(Sort(str(sort_key), descending=True),), max_results=1))
        return rows[0] if rows else None

    def count(self, collection: str) -> int:
        table = self._table(collection, "count")
        stmt = sa.select(sa.func.count().label("n")).select_from(table)
        return int(self._read(collection, "count", stmt)[0]["n"])

    def clear(self, collection: str) -> None:
        table = self._table(collection, "clear")
        try:
            with self._engine.begin() as conn:
                conn.execute(table.delete())
        except SQLAlchemyError as exc:
            logger.error("SQL clear failed for %s: %s", collection, type(exc).__name__)
            raise TransactionError(
                collection=collection,
                operation="clear",
                detail="Delete transaction failed.",
                cause=exc,
            ) from exc

    def build_query(self) -> Query:
        return Query()

    def run(self, collection: str, query: Query) -> list[dict[str, Any]]:
        table = self._table(collection, "query")
        stmt = table.select()
        if query.predicate is not None:
            stmt = stmt.where(_compile(query.predicate, table, collection))
        for sort in query.ordering:
            col = _column(table, sort.field, collection)
            stmt = stmt.order_by(*_order_clauses(col, sort.descending))
        if query.max_results is not None:
            stmt = stmt.limit(query.max_results)
        return self._read(collection, "query", stmt)


def _column(table: sa.Table, name: str, collection: str) -> sa.Column:
    if name not in table.c:
        raise QueryError(
            collection=collection,
            operation="query",
            detail=f"Unknown column '{name}'.",
        )
    return table.c[name]


def _order_clauses(col: sa.Column, descending: bool) -> tuple[Any, Any]:
    # NULL first ascending, last descending, whatever the dialect's default
    null_rank = sa.case((col.is_(None), 0), else_=1)
    if descending:
        return null_rank.desc(), col.desc()
    return null_rank.asc(), col.asc()


def _unmapped_columns(table: sa.Table, values: dict[str, Any], collection: str, operation: str) -> None:
    missing = sorted(k for k in values if k not in table.c)
    if missing:
        logger.error("SQL %s failed for %s: no column for %s", operation, collection, missing)
        raise QueryError(
            collection=collection,
            operation=operation,
            detail=f"No column for attribute(s) {', '.join(repr(k) for k in missing)}.",
        )


def _compile(pred: Predicate, table: sa.Table, collection: str) -> Any:
    """Translate a predicate tree into a SQLAlchemy boolean clause.

    Comparisons never evaluate to NULL, so ``Not`` yields the exact
    complement of its operand.
    """
    if isinstance(pred, Compare):
        col = _column(table, pred.field, collection)
        if pred.value is None and pred.op is Op.EQ:
            return col.is_(None)
        if pred.value is None and pred.op is Op.NE:
            return col.is_not(None)
        if pred.op is Op.NE:
            return sa.or_(col.is_(None), col != pred.value)
        if pred.op is Op.IN:
            return sa.and_(col.is_not(None), col.in_(list(pred.value)))
        clause = {
            Op.EQ: lambda: col == pred.value,
            Op.GT: lambda: col > pred.value,
            Op.GE: lambda: col >= pred.value,
            Op.LT: lambda: col < pred.value,
            Op.LE: lambda: col <= pred.value,
        }[pred.op]()
        return sa.and_(col.is_not(None), clause)
    if isinstance(pred, And):
        return sa.and_(*(_compile(item, table, collection) for item in pred.items))
    if isinstance(pred, Or):
        return sa.or_(*(_compile(item, table, collection) for item in pred.items))
    if isinstance(pred, Not):
        return sa.not_(_compile(pred.item, table, collection))
    raise QueryError(
        collection=collection,
        operation="query",
        detail=f"Unsupported predicate node: {type(pred).__name__}",
    )
