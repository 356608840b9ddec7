"""Ninja Mapper — entity/repository persistence mapping for Ninja Stack."""

from ninja_mapper.adapters.memory import InMemoryAdapter
from ninja_mapper.adapters.mongo import MongoAdapter
from ninja_mapper.adapters.sql import SQLAdapter
from ninja_mapper.config import RepositoryConfig, configure, default_config, reset_config
from ninja_mapper.connections import (
    ConnectionManager,
    ConnectionProfile,
    InvalidConnectionURL,
    configure_from_file,
)
from ninja_mapper.entity import Entity
from ninja_mapper.exceptions import (
    ConfigurationError,
    ConnectionFailedError,
    DuplicateEntityError,
    EntityExisted,
    EntityIdNotFound,
    EntityNotFound,
    EntityTypeError,
    NonPersistedEntityError,
    PersistenceError,
    QueryError,
    TransactionError,
    UnknownAttributeError,
)
from ninja_mapper.protocols import Adapter
from ninja_mapper.query import Attr, Ordering, Query, asc, desc
from ninja_mapper.repository import Repository, ResultSet

__all__ = [
    "Adapter",
    "Attr",
    "ConfigurationError",
    "ConnectionFailedError",
    "ConnectionManager",
    "ConnectionProfile",
    "DuplicateEntityError",
    "Entity",
    "EntityExisted",
    "EntityIdNotFound",
    "EntityNotFound",
    "EntityTypeError",
    "InMemoryAdapter",
    "InvalidConnectionURL",
    "MongoAdapter",
    "NonPersistedEntityError",
    "Ordering",
    "PersistenceError",
    "Query",
    "QueryError",
    "Repository",
    "RepositoryConfig",
    "ResultSet",
    "SQLAdapter",
    "TransactionError",
    "UnknownAttributeError",
    "asc",
    "configure",
    "configure_from_file",
    "default_config",
    "desc",
    "reset_config",
]
