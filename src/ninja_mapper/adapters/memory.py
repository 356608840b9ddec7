"""Dict-backed in-memory adapter for tests and prototyping."""

from __future__ import annotations

import logging
import operator
from collections.abc import Callable, Iterator
from typing import Any

from ninja_mapper.adapters import ID_FIELD, _new_id, _split_id
from ninja_mapper.exceptions import DuplicateEntityError, QueryError
from ninja_mapper.query import And, Compare, Not, Op, Or, Predicate, Query, Sort

logger = logging.getLogger(__name__)

_COMPARATORS: dict[Op, Callable[[Any, Any], bool]] = {
    Op.EQ: operator.eq,
    Op.NE: operator.ne,
    Op.GT: operator.gt,
    Op.GE: operator.ge,
    Op.LT: operator.lt,
    Op.LE: operator.le,
    Op.IN: lambda value, options: value in options,
}


class InMemoryAdapter:
    """Dict-of-dicts store that mirrors the Adapter protocol.

    Collections are created on first write. Records keep insertion order, so
    ``scan`` is stable between calls.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[tuple[type, Any], dict[str, Any]]] = {}

    def _records(self, collection: str) -> dict[tuple[type, Any], dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def insert(self, collection: str, attributes: dict[str, Any]) -> Any:
        record_id, values = _split_id(attributes)
        if record_id is None:
            record_id = _new_id()
        records = self._records(collection)
        if _slot(record_id) in records:
            logger.error("Memory insert failed for %s: duplicate key", collection)
            raise DuplicateEntityError(
                collection=collection,
                operation="create",
                detail="A record with the same id already exists.",
            )
        records[_slot(record_id)] = {ID_FIELD: record_id, **values}
        return record_id

    def update(self, collection: str, id: Any, attributes: dict[str, Any]) -> bool:
        records = self._records(collection)
        if _slot(id) not in records:
            return False
        _, values = _split_id(attributes)
        records[_slot(id)] = {ID_FIELD: id, **values}
        return True

    def delete(self, collection: str, id: Any) -> bool:
        records = self._records(collection)
        if _slot(id) not in records:
            return False
        del records[_slot(id)]
        return True

    def find_by_id(self, collection: str, id: Any) -> dict[str, Any] | None:
        records = self._records(collection)
        if _slot(id) not in records:
            return None
        return dict(records[_slot(id)])

    def scan(self, collection: str) -> Iterator[dict[str, Any]]:
        for record in list(self._records(collection).values()):
            yield dict(record)

    def first(self, collection: str, sort_key: str) -> dict[str, Any] | None:
        rows = self.run(collection, Query(ordering=(Sort(str(sort_key)),), max_results=1))
        return rows[0] if rows else None

    def last(self, collection: str, sort_key: str) -> dict[str, Any] | None:
        rows = self.run(collection, Query(ordering=(Sort(str(sort_key), descending=True),), max_results=1))
        return rows[0] if rows else None

    def count(self, collection: str) -> int:
        return len(self._records(collection))

    def clear(self, collection: str) -> None:
        self._records(collection).clear()

    def build_query(self) -> Query:
        return Query()

    def run(self, collection: str, query: Query) -> list[dict[str, Any]]:
        try:
            rows = [dict(r) for r in self._records(collection).values() if _matches(query.predicate, r)]
            for sort in reversed(query.ordering):
                rows.sort(key=lambda r, f=sort.field: _sort_key(r.get(f)), reverse=sort.descending)
        except TypeError as exc:
            logger.error("Memory query failed for %s: %s", collection, type(exc).__name__)
            raise QueryError(
                collection=collection,
                operation="query",
                detail="Values of incompatible types were compared.",
                cause=exc,
            ) from exc
        if query.max_results is not None:
            rows = rows[: query.max_results]
        return rows


def _slot(key: Any) -> tuple[type, Any]:
    """Storage key for an id; tells ``1`` apart from ``True`` and ``1.0``."""
    return (type(key), key)


def _sort_key(value: Any) -> tuple[bool, Any]:
    # None sorts first ascending, like SQL NULLs and Mongo nulls.
    return (value is not None, value if value is not None else 0)


def _matches(pred: Predicate | None, record: dict[str, Any]) -> bool:
    if pred is None:
        return True
    if isinstance(pred, Compare):
        value = record.get(pred.field)
        if value is None and pred.op not in (Op.EQ, Op.NE, Op.IN):
            return False
        return _COMPARATORS[pred.op](value, pred.value)
    if isinstance(pred, And):
        return all(_matches(item, record) for item in pred.items)
    if isinstance(pred, Or):
        return any(_matches(item, record) for item in pred.items)
    if isinstance(pred, Not):
        return not _matches(pred.item, record)
    raise TypeError(f"Unsupported predicate node: {type(pred).__name__}")
