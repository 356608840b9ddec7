"""PyMongo adapter implementing the Adapter protocol."""

from __future__ import annotations

import logging
from typing import Any

from ninja_mapper.adapters import ID_FIELD, _new_id, _split_id
from ninja_mapper.exceptions import (
    ConfigurationError,
    ConnectionFailedError,
    DuplicateEntityError,
    PersistenceError,
    QueryError,
)
from ninja_mapper.query import And, Compare, Not, Op, Or, Predicate, Query, Sort

logger = logging.getLogger(__name__)

_MONGO_ID = "_id"

_OPERATORS: dict[Op, str] = {
    Op.EQ: "$eq",
    Op.NE: "$ne",
    Op.GT: "$gt",
    Op.GE: "$gte",
    Op.LT: "$lt",
    Op.LE: "$lte",
    Op.IN: "$in",
}


class MongoAdapter:
    """Synchronous MongoDB adapter backed by PyMongo.

    Each collection maps to a Mongo collection. The record ``id`` is stored
    as ``_id``; when the caller supplies none a hex string is generated so
    that ids round-trip as plain strings rather than ``ObjectId`` values.

    Requires the ``pymongo`` optional dependency:
        pip install ninja-mapper[mongo]
    """

    def __init__(self, database: Any = None) -> None:
        self._database = database

    def _get_collection(self, collection: str) -> Any:
        """Return the PyMongo collection, raising if no database is configured."""
        if self._database is None:
            raise ConfigurationError(
                collection=collection,
                operation="connect",
                detail="MongoAdapter requires a PyMongo database instance. Pass it via the `database` parameter.",
            )
        return self._database[collection]

    def _fail(self, collection: str, operation: str, exc: Exception, detail: str) -> PersistenceError:
        """Build the domain error for a driver exception raised during *operation*."""
        if _is_connection_error(exc):
            logger.error("Mongo %s connection error for %s: %s", operation, collection, type(exc).__name__)
            return ConnectionFailedError(
                collection=collection,
                operation=operation,
                detail="Database connection failed.",
                cause=exc,
            )
        logger.error("Mongo %s failed for %s: %s", operation, collection, type(exc).__name__)
        return QueryError(collection=collection, operation=operation, detail=detail, cause=exc)

    def insert(self, collection: str, attributes: dict[str, Any]) -> Any:
        coll = self._get_collection(collection)
        record_id, values = _split_id(attributes)
        if record_id is None:
            record_id = _new_id()
        try:
            coll.insert_one({_MONGO_ID: record_id, **values})
        except Exception as exc:
            if _is_duplicate_key_error(exc):
                logger.error("Mongo create failed for %s: duplicate key", collection)
                raise DuplicateEntityError(
                    collection=collection,
                    operation="create",
                    detail="A document with the same key already exists.",
                    cause=exc,
                ) from exc
            raise self._fail(collection, "create", exc, "Insert operation failed.") from exc
        return record_id

    def update(self, collection: str, id: Any, attributes: dict[str, Any]) -> bool:
        coll = self._get_collection(collection)
        _, values = _split_id(attributes)
        _reject_mongo_operators(values, collection)
        try:
            result = coll.replace_one({_MONGO_ID: id}, values)
        except Exception as exc:
            if _is_duplicate_key_error(exc):
                logger.error("Mongo update failed for %s (id=%s): duplicate key", collection, id)
                raise DuplicateEntityError(
                    collection=collection,
                    operation="update",
                    detail="Update violates a uniqueness constraint.",
                    cause=exc,
                ) from exc
            raise self._fail(collection, "update", exc, "Update operation failed.") from exc
        return result.matched_count > 0

    def delete(self, collection: str, id: Any) -> bool:
        coll = self._get_collection(collection)
        try:
            result = coll.delete_one({_MONGO_ID: id})
        except Exception as exc:
            raise self._fail(collection, "delete", exc, "Delete operation failed.") from exc
        return result.deleted_count > 0

    def find_by_id(self, collection: str, id: Any) -> dict[str, Any] | None:
        coll = self._get_collection(collection)
        try:
            doc = coll.find_one({_MONGO_ID: id})
        except Exception as exc:
            raise self._fail(collection, "find", exc, "Query execution failed.") from exc
        return _to_record(doc) if doc else None

    def scan(self, collection: str) -> list[dict[str, Any]]:
        return self.run(collection, Query())

    def first(self, collection: str, sort_key: str) -> dict[str, Any] | None:
        rows = self.run(collection, Query(ordering=(Sort(str(sort_key)),), max_results=1))
        return rows[0] if rows else None

    def last(self, collection: str, sort_key: str) -> dict[str, Any] | None:
        rows = self.run(collection, Query(ordering=(Sort(str(sort_key), descending=True),), max_results=1))
        return rows[0] if rows else None

    def count(self, collection: str) -> int:
        coll = self._get_collection(collection)
        try:
            return int(coll.count_documents({}))
        except Exception as exc:
            raise self._fail(collection, "count", exc, "Count failed.") from exc

    def clear(self, collection: str) -> None:
        coll = self._get_collection(collection)
        try:
            coll.delete_many({})
        except Exception as exc:
            raise self._fail(collection, "clear", exc, "Delete operation failed.") from exc

    def build_query(self) -> Query:
        return Query()

    def run(self, collection: str, query: Query) -> list[dict[str, Any]]:
        filters = _compile(query.predicate, collection) if query.predicate is not None else {}
        coll = self._get_collection(collection)
        try:
            cursor = coll.find(filters)
            if query.ordering:
                cursor = cursor.sort([(_mongo_field(s.field), -1 if s.descending else 1) for s in query.ordering])
            if query.max_results is not None:
                if query.max_results == 0:
                    return []
                cursor = cursor.limit(query.max_results)
            return [_to_record(doc) for doc in cursor]
        except Exception as exc:
            raise self._fail(collection, "query", exc, "Query execution failed.") from exc


def _mongo_field(name: str) -> str:
    return _MONGO_ID if name == ID_FIELD else name


def _to_record(doc: dict[str, Any]) -> dict[str, Any]:
    record = {k: v for k, v in doc.items() if k != _MONGO_ID}
    record[ID_FIELD] = doc.get(_MONGO_ID)
    return record


def _compile(pred: Predicate, collection: str) -> dict[str, Any]:
    """Translate a predicate tree into a Mongo filter document."""
    if isinstance(pred, Compare):
        _reject_mongo_operators(pred.value, collection)
        value = list(pred.value) if pred.op is Op.IN else pred.value
        return {_mongo_field(pred.field): {_OPERATORS[pred.op]: value}}
    if isinstance(pred, And):
        return {"$and": [_compile(item, collection) for item in pred.items]}
    if isinstance(pred, Or):
        return {"$or": [_compile(item, collection) for item in pred.items]}
    if isinstance(pred, Not):
        return {"$nor": [_compile(pred.item, collection)]}
    raise QueryError(
        collection=collection,
        operation="query",
        detail=f"Unsupported predicate node: {type(pred).__name__}",
    )


def _reject_mongo_operators(value: Any, collection: str) -> None:
    """Raise ``QueryError`` if *value* (recursively) holds a ``$``-prefixed key.

    Comparison values and stored documents are data, never operators; this
    keeps user input from smuggling ``$where`` or ``$regex`` into a filter.
    """
    def _check(obj: Any) -> None:
        if isinstance(obj, dict):
            for key in obj:
                if isinstance(key, str) and key.startswith("$"):
                    raise QueryError(
                        collection=collection,
                        operation="query",
                        detail=f"Key '{key}' is not allowed: MongoDB operators are rejected for security.",
                    )
                _check(obj[key])
        elif isinstance(obj, (list, tuple)):
            for item in obj:
                _check(item)

    _check(value)


def _is_duplicate_key_error(exc: Exception) -> bool:
    """Check whether *exc* is a MongoDB duplicate-key error.

    Works with or without ``pymongo`` installed by inspecting the exception's
    class name and the error code attribute used by PyMongo.
    """
    if type(exc).__name__ == "DuplicateKeyError":
        return True
    # PyMongo wraps duplicate key errors as WriteError with code 11000.
    return getattr(exc, "code", None) == 11000


def _is_connection_error(exc: Exception) -> bool:
    """Check whether *exc* indicates a connection-level failure.

    Detects PyMongo ``ConnectionFailure``, ``ServerSelectionTimeoutError``, and
    similar network-layer exceptions without requiring the import.
    """
    type_names = {cls.__name__ for cls in type(exc).__mro__}
    return bool(type_names & {"ConnectionFailure", "ServerSelectionTimeoutError", "AutoReconnect", "NetworkTimeout"})
