"""Adapter protocol — the storage primitives a repository relies on."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

from ninja_mapper.query import Query


@runtime_checkable
class Adapter(Protocol):
    """Storage-engine interface consumed by :class:`~ninja_mapper.Repository`.

    Every adapter (memory, SQL, Mongo) implements this protocol so that
    repositories can map entities without knowing the backend. Records are
    plain dicts keyed by attribute name, with the identity under ``"id"``.
    """

    def insert(self, collection: str, attributes: dict[str, Any]) -> Any:
        """Insert a record and return its id.

        Uses ``attributes["id"]`` when present, otherwise generates one.
        Raises ``DuplicateEntityError`` if the id is already stored.
        """
        ...

    def update(self, collection: str, id: Any, attributes: dict[str, Any]) -> bool:
        """Overwrite the record stored at ``id``. Returns False if absent."""
        ...

    def delete(self, collection: str, id: Any) -> bool:
        """Delete the record stored at ``id``. Returns False if absent."""
        ...

    def find_by_id(self, collection: str, id: Any) -> dict[str, Any] | None: ...

    def scan(self, collection: str) -> Iterable[dict[str, Any]]: ...

    def first(self, collection: str, sort_key: str) -> dict[str, Any] | None: ...

    def last(self, collection: str, sort_key: str) -> dict[str, Any] | None: ...

    def count(self, collection: str) -> int: ...

    def clear(self, collection: str) -> None: ...

    def build_query(self) -> Query:
        """Return an empty query for finder blocks to refine."""
        ...

    def run(self, collection: str, query: Query) -> list[dict[str, Any]]:
        """Execute ``query`` against ``collection`` and return matching records."""
        ...
