"""Domain exceptions for the mapping layer.

Adapters catch their driver exceptions and re-raise one of the adapter-level
errors below; the repository raises the entity-level errors after inspecting
an entity's id and the adapter's outcome. Callers never see raw database
errors.
"""

from __future__ import annotations


class PersistenceError(Exception):
    """Base exception for all persistence-layer errors.

    Attributes:
        collection: The name of the collection involved.
        operation: The operation that failed (e.g. ``"create"``, ``"find"``).
        detail: A sanitised description of what went wrong.
    """

    def __init__(
        self,
        *,
        collection: str,
        operation: str,
        detail: str,
        cause: Exception | None = None,
    ) -> None:
        self.collection = collection
        self.operation = operation
        self.detail = detail
        msg = f"[{collection}] {operation} failed: {detail}"
        super().__init__(msg)
        if cause is not None:
            self.__cause__ = cause


# -- Adapter-level errors -----------------------------------------------------


class DuplicateEntityError(PersistenceError):
    """Raised by an adapter when an insert violates a uniqueness constraint."""


class ConnectionFailedError(PersistenceError):
    """Raised when the adapter cannot reach the database."""


class QueryError(PersistenceError):
    """Raised for invalid queries, bad filter expressions, or schema mismatches."""


class TransactionError(PersistenceError):
    """Raised when a write transaction fails to commit or rollback."""


# -- Repository-level errors --------------------------------------------------


class ConfigurationError(PersistenceError):
    """Raised when a repository has no adapter or no collection bound."""


class EntityExisted(PersistenceError):
    """Raised by ``create`` when the entity's id is already stored."""


class NonPersistedEntityError(PersistenceError):
    """Raised by ``update``/``delete`` when the entity's id is not stored."""


class EntityNotFound(PersistenceError):
    """Raised by ``find`` when no record matches the given id."""


class EntityIdNotFound(PersistenceError):
    """Raised by ``find`` when the argument is neither a key nor exposes ``id``."""


class EntityTypeError(PersistenceError, TypeError):
    """Raised when ``find`` gets an entity instead of a key, or a write gets
    an object that is not an instance of the bound entity class.
    """


# -- Entity-level errors ------------------------------------------------------


class UnknownAttributeError(AttributeError):
    """Raised when an entity is given an attribute name it does not declare."""

    def __init__(self, entity_name: str, names: list[str]) -> None:
        self.entity_name = entity_name
        self.names = sorted(names)
        joined = ", ".join(repr(n) for n in self.names)
        super().__init__(f"{entity_name} has no attribute(s) {joined}")
