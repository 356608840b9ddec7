"""Entity base model for identity-bearing domain objects."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from ninja_mapper.exceptions import UnknownAttributeError

logger = logging.getLogger(__name__)

ID_FIELD = "id"


class Entity(BaseModel):
    """An object defined by its identity.

    Declare attributes as annotated fields; ``id`` is inherited and stays
    ``None`` until a repository persists the entity::

        class User(Entity):
            name: str | None = None
            age: int | None = None

    Subclasses may re-annotate ``id`` (e.g. ``id: int | None = None``) so that
    backends with typed keys can pick a matching column type.

    Two entities are equal when they are instances of the same class and carry
    the same ``id``, regardless of their other attribute values.
    """

    id: Any = None

    model_config = {"extra": "forbid"}

    def __init__(self, /, **data: Any) -> None:
        unknown = [name for name in data if name not in type(self).model_fields]
        if unknown:
            raise UnknownAttributeError(type(self).__name__, unknown)
        super().__init__(**data)

    def __setattr__(self, name: str, value: Any) -> None:
        if not name.startswith("_") and name not in type(self).model_fields:
            raise UnknownAttributeError(type(self).__name__, [name])
        super().__setattr__(name, value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return NotImplemented
        return type(self) is type(other) and self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self), self.id))

    @classmethod
    def attributes(cls) -> list[str]:
        """Return the declared attribute names, ``id`` first."""
        return [ID_FIELD, *(name for name in cls.model_fields if name != ID_FIELD)]

    @classmethod
    def from_mapping(cls, data: Mapping[Any, Any]) -> Entity:
        """Build an entity from a mapping, rejecting unknown attribute names.

        Keys may be strings or anything whose ``str()`` is the attribute name.
        """
        return cls(**{str(key): value for key, value in data.items()})

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Entity:
        """Build an entity from a stored record.

        Keys the entity does not declare (storage bookkeeping such as
        embeddings or driver metadata) are dropped.
        """
        declared = cls.model_fields
        dropped = [key for key in record if key not in declared]
        if dropped:
            logger.debug("Dropping undeclared keys %s while loading %s", dropped, cls.__name__)
        return cls(**{key: value for key, value in record.items() if key in declared})

    def to_record(self) -> dict[str, Any]:
        """Return the attribute values to store, without ``id``."""
        return self.model_dump(exclude={ID_FIELD})
