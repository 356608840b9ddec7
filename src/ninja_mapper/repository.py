"""Repository — maps one entity class onto one collection of an adapter.

Subclass :class:`Repository`, bind the entity class and add finders built
from :meth:`Repository.query`::

    class ArticleRepository(Repository):
        entity = Article

        def by_user(self, user: User) -> ResultSet:
            return self.query(lambda q: q.filter(user_id=user.id))

        def highest_rank(self) -> ResultSet:
            return self.query(lambda q, o: q.order_by(o.desc("rank")).limit(1))

        def not_by_user(self, user: User) -> ResultSet:
            return self.exclude(self.by_user(user))

    articles = ArticleRepository(RepositoryConfig(adapter=InMemoryAdapter()))
    articles.create(Article(title="Thread safety"))
"""

from __future__ import annotations

import inspect
import logging
import re
import uuid
from collections.abc import Callable, Iterable, Iterator
from typing import Any, ClassVar

from ninja_mapper.config import RepositoryConfig, default_config
from ninja_mapper.entity import ID_FIELD, Entity
from ninja_mapper.exceptions import (
    ConfigurationError,
    DuplicateEntityError,
    EntityExisted,
    EntityIdNotFound,
    EntityNotFound,
    EntityTypeError,
    NonPersistedEntityError,
    UnknownAttributeError,
)
from ninja_mapper.protocols import Adapter
from ninja_mapper.query import Attr, Not, Ordering, Predicate, Query, Sort

logger = logging.getLogger(__name__)

# bool is excluded explicitly where these are checked.
_RAW_KEY_TYPES = (str, int, uuid.UUID)

_DECIMAL_RE = re.compile(r"^-?[0-9]+$")

_MISSING = object()

FinderBlock = Callable[..., Query]


def _pluralize(name: str) -> str:
    """Naive English plural used for default collection names."""
    if len(name) > 1 and name.endswith("y") and name[-2] not in "aeiou":
        return name[:-1] + "ies"
    if name.endswith(("s", "x", "z", "ch", "sh")):
        return name + "es"
    return name + "s"


def default_collection_name(entity: type[Entity]) -> str:
    """Collection name derived from an entity class: ``Category`` -> ``categories``."""
    return _pluralize(entity.__name__.lower())


def _is_raw_key(value: Any) -> bool:
    return isinstance(value, _RAW_KEY_TYPES) and not isinstance(value, bool)


def _key_candidates(key: Any) -> list[Any]:
    """Lookup keys to try, in order, for one logical id.

    A decimal string also matches an integer id and a UUID also matches its
    string form. An integer never matches a string id.
    """
    candidates = [key]
    if isinstance(key, str) and _DECIMAL_RE.match(key) and str(int(key)) == key:
        candidates.append(int(key))
    elif isinstance(key, uuid.UUID):
        candidates.append(str(key))
    return candidates


def _same_key(stored: Any, candidate: Any) -> bool:
    return type(stored) is type(candidate) and stored == candidate


def _takes_ordering(block: FinderBlock) -> bool:
    """True when a finder block accepts a second positional argument."""
    try:
        params = list(inspect.signature(block).parameters.values())
    except (TypeError, ValueError):
        return False
    if any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params):
        return True
    positional = [
        p for p in params if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    return len(positional) >= 2


class ResultSet:
    """Lazy, restartable view over the entities a query matches.

    Nothing is fetched until iteration; each iteration runs the query again,
    so a ResultSet always reflects the collection at the time it is read.
    """

    def __init__(self, repository: Repository, query: Query | None = None) -> None:
        self._repository = repository
        self._query = query

    @property
    def repository(self) -> Repository:
        return self._repository

    @property
    def expression(self) -> Query:
        """The query this result set runs; an unrestricted query for ``all()``."""
        return self._query if self._query is not None else Query()

    def __iter__(self) -> Iterator[Entity]:
        return self._repository._materialize(self._repository._fetch(self._query))

    def __len__(self) -> int:
        return self.count()

    def __bool__(self) -> bool:
        return self.first() is not None

    def __repr__(self) -> str:
        return f"ResultSet({self._repository.collection!r}, {self.expression!r})"

    def to_list(self) -> list[Entity]:
        return list(self)

    def first(self) -> Entity | None:
        """Return the first matching entity, fetching at most one record."""
        return next(iter(self.limit(1)), None)

    def count(self) -> int:
        if self._query is None:
            return self._repository.count()
        return sum(1 for _ in self._repository._fetch(self._query))

    def ids(self) -> list[Any]:
        return [entity.id for entity in self]

    def _derive(self, query: Query) -> ResultSet:
        return ResultSet(self._repository, self._repository._checked(query))

    def where(self, *predicates: Predicate) -> ResultSet:
        return self._derive(self.expression.where(*predicates))

    def filter(self, criteria: dict[str, Any] | None = None, /, **equals: Any) -> ResultSet:
        return self._derive(self.expression.filter(criteria, **equals))

    def order_by(self, *sorts: Sort | str) -> ResultSet:
        return self._derive(self.expression.order_by(*sorts))

    def limit(self, count: int) -> ResultSet:
        """Cap the result size; an existing tighter limit is kept."""
        return self._derive(self.expression.merge(Query().limit(count)))

    def refine(self, other: ResultSet | Query) -> ResultSet:
        """Narrow this result set to the records *other* also matches.

        ``other``'s ordering wins when it has one; the tighter limit is kept.
        """
        other_query = other.expression if isinstance(other, ResultSet) else other
        return self._derive(self.expression.merge(other_query))


class Repository:
    """Persistence gateway for one entity class and one collection.

    Class attributes:
        entity: The mapped :class:`Entity` subclass (required).
        collection_name: Optional collection override; defaults to the
            lowercased, pluralized entity class name.

    The adapter comes from the :class:`RepositoryConfig` passed at
    construction, or from the process-wide default set with
    :func:`ninja_mapper.configure`.
    """

    entity: ClassVar[type[Entity] | None] = None
    collection_name: ClassVar[str | None] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        bound = cls.__dict__.get("entity")
        if bound is not None and not (isinstance(bound, type) and issubclass(bound, Entity)):
            raise TypeError(f"{cls.__name__}.entity must be an Entity subclass, got {bound!r}")

    def __init__(
        self,
        config: RepositoryConfig | None = None,
        *,
        adapter: Adapter | None = None,
        collection: str | None = None,
    ) -> None:
        if config is None:
            config = RepositoryConfig(adapter=adapter) if adapter is not None else default_config()
        elif adapter is not None:
            raise ValueError("Pass either a RepositoryConfig or an adapter, not both")
        self._adapter: Adapter = config.adapter

        entity = type(self).entity
        name = collection or config.collection or type(self).collection_name
        if name is None and entity is not None:
            name = default_collection_name(entity)
        self._collection: str | None = name

    def __repr__(self) -> str:
        return f"{type(self).__name__}(collection={self._collection!r}, adapter={type(self._adapter).__name__})"

    # -- Configuration ---------------------------------------------------------

    @property
    def adapter(self) -> Adapter:
        return self._adapter

    @property
    def collection(self) -> str:
        """The bound collection name."""
        if self._collection is None:
            raise ConfigurationError(
                collection="?",
                operation="collection",
                detail=f"{type(self).__name__} has no entity and no collection bound.",
            )
        return self._collection

    @collection.setter
    def collection(self, name: str) -> None:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("collection name must be a non-empty string")
        logger.debug("%s collection bound to %s", type(self).__name__, name)
        self._collection = name

    def _entity_class(self, operation: str) -> type[Entity]:
        entity = type(self).entity
        if entity is None:
            raise ConfigurationError(
                collection=self._collection or "?",
                operation=operation,
                detail=f"{type(self).__name__} has no entity class bound.",
            )
        return entity

    # -- Internals -------------------------------------------------------------

    def _materialize(self, records: Iterable[dict[str, Any]]) -> Iterator[Entity]:
        entity = self._entity_class("load")
        for record in records:
            yield entity.from_record(record)

    def _fetch(self, query: Query | None) -> Iterable[dict[str, Any]]:
        if query is None:
            return self._adapter.scan(self.collection)
        return self._adapter.run(self.collection, query)

    def _check_fields(self, names: Iterable[str]) -> None:
        declared = set(self._entity_class("query").attributes())
        unknown = [name for name in names if name not in declared]
        if unknown:
            raise UnknownAttributeError(self._entity_class("query").__name__, unknown)

    def _checked(self, query: Query) -> Query:
        self._check_fields(query.fields())
        return query

    def _check_instance(self, obj: Any, operation: str) -> Entity:
        entity = self._entity_class(operation)
        if not isinstance(obj, entity):
            raise EntityTypeError(
                collection=self.collection,
                operation=operation,
                detail=f"Expected a {entity.__name__}, got {type(obj).__name__}.",
            )
        return obj

    def _lookup_key(self, key: Any) -> Any:
        """Reduce a ``find`` argument to a raw key.

        Accepts raw keys and id-bearing objects; rejects entities outright.
        """
        if isinstance(key, Entity):
            raise EntityTypeError(
                collection=self.collection,
                operation="find",
                detail=f"find() takes an id, not a {type(key).__name__} entity.",
            )
        if _is_raw_key(key):
            return key
        value = getattr(key, ID_FIELD, _MISSING) if key is not None else _MISSING
        if value is _MISSING or callable(value) or not (value is None or _is_raw_key(value)):
            raise EntityIdNotFound(
                collection=self.collection,
                operation="find",
                detail=f"{type(key).__name__} is neither an id nor exposes one.",
            )
        return value

    # -- CRUD ------------------------------------------------------------------

    def create(self, entity: Entity) -> Any:
        """Insert *entity* and write the assigned id back onto it.

        A caller-assigned id is kept verbatim.

        Raises:
            EntityExisted: A record with the same id is already stored.
        """
        self._check_instance(entity, "create")
        attributes = {ID_FIELD: entity.id, **entity.to_record()}
        try:
            record_id = self._adapter.insert(self.collection, attributes)
        except DuplicateEntityError as exc:
            raise EntityExisted(
                collection=self.collection,
                operation="create",
                detail=f"{type(entity).__name__} with id {entity.id!r} already exists.",
                cause=exc,
            ) from exc
        entity.id = record_id
        logger.debug("Created %s %r in %s", type(entity).__name__, record_id, self.collection)
        return record_id

    def update(self, entity: Entity) -> Any:
        """Overwrite the stored record with *entity*'s current attributes.

        Raises:
            NonPersistedEntityError: *entity* has no id or its id is not stored.
        """
        self._check_instance(entity, "update")
        if entity.id is None or not self._adapter.update(self.collection, entity.id, entity.to_record()):
            raise NonPersistedEntityError(
                collection=self.collection,
                operation="update",
                detail=f"{type(entity).__name__} with id {entity.id!r} is not persisted.",
            )
        logger.debug("Updated %s %r in %s", type(entity).__name__, entity.id, self.collection)
        return entity.id

    def persist(self, entity: Entity) -> Any:
        """Create *entity* when it has no id, update it otherwise. Returns the id."""
        if self._check_instance(entity, "persist").id is None:
            return self.create(entity)
        return self.update(entity)

    def delete(self, entity: Entity) -> None:
        """Remove *entity*'s record.

        Raises:
            NonPersistedEntityError: *entity* has no id or its id is not stored.
        """
        self._check_instance(entity, "delete")
        if entity.id is None or not self._adapter.delete(self.collection, entity.id):
            raise NonPersistedEntityError(
                collection=self.collection,
                operation="delete",
                detail=f"{type(entity).__name__} with id {entity.id!r} is not persisted.",
            )
        logger.debug("Deleted %s %r from %s", type(entity).__name__, entity.id, self.collection)

    def find(self, key: Any) -> Entity:
        """Return the entity stored under *key*.

        *key* is a raw id (``str``, ``int``, ``uuid.UUID``) or any non-entity
        object exposing ``id``. A decimal string also finds an integer id.

        Raises:
            EntityTypeError: *key* is an entity.
            EntityIdNotFound: *key* is neither an id nor exposes one.
            EntityNotFound: No record is stored under the id.
        """
        lookup = self._lookup_key(key)
        if lookup is not None:
            for candidate in _key_candidates(lookup):
                record = self._adapter.find_by_id(self.collection, candidate)
                if record is not None and _same_key(record.get(ID_FIELD), candidate):
                    return next(self._materialize([record]))
        raise EntityNotFound(
            collection=self.collection,
            operation="find",
            detail=f"No record with id {lookup!r}.",
        )

    def all(self, callback: Callable[[Entity], Any] | None = None) -> ResultSet:
        """Return every entity in the collection as a lazy :class:`ResultSet`.

        When *callback* is given it is called once per entity before the
        result set is returned.
        """
        results = ResultSet(self)
        if callback is not None:
            for entity in results:
                callback(entity)
        return results

    def first(self, sort_key: Any) -> Entity | None:
        """Entity with the smallest *sort_key* value, or None if the collection is empty."""
        self._check_fields([str(sort_key)])
        record = self._adapter.first(self.collection, str(sort_key))
        return None if record is None else next(self._materialize([record]))

    def last(self, sort_key: Any) -> Entity | None:
        """Entity with the largest *sort_key* value, or None if the collection is empty."""
        self._check_fields([str(sort_key)])
        record = self._adapter.last(self.collection, str(sort_key))
        return None if record is None else next(self._materialize([record]))

    def count(self) -> int:
        return self._adapter.count(self.collection)

    def clear(self) -> None:
        self._adapter.clear(self.collection)
        logger.debug("Cleared %s", self.collection)

    def find_by(self, criteria: dict[str, Any] | None = None, /, **fields: Any) -> Entity | None:
        """First entity whose attributes equal every given value, or None."""
        merged = {**(criteria or {}), **fields}
        if not merged:
            raise ValueError("find_by() needs at least one attribute")
        query = self._checked(self._adapter.build_query().filter(merged).limit(1))
        records = self._adapter.run(self.collection, query)
        return next(self._materialize(records), None)

    # -- Finder DSL ------------------------------------------------------------

    def query(self, block: FinderBlock) -> ResultSet:
        """Build a finder from *block*.

        *block* receives a fresh query builder (and, if it takes a second
        positional argument, an :class:`~ninja_mapper.query.Ordering` handle)
        and returns the refined :class:`~ninja_mapper.query.Query`.
        """
        builder = self._adapter.build_query()
        result = block(builder, Ordering) if _takes_ordering(block) else block(builder)
        if not isinstance(result, Query):
            raise TypeError(f"Finder block must return a Query, got {type(result).__name__}")
        return ResultSet(self, self._checked(result))

    def exclude(self, finder: ResultSet | Query) -> ResultSet:
        """Entities of the collection that *finder* does not match.

        A finder without a limit is negated as an expression. A limited finder
        is evaluated now and its ids are excluded.
        """
        if isinstance(finder, ResultSet):
            if finder.repository.collection != self.collection:
                raise ValueError(
                    f"Cannot exclude a finder over {finder.repository.collection!r} from {self.collection!r}"
                )
            expression = finder.expression
        else:
            expression = self._checked(finder)
            finder = ResultSet(self, expression)

        if expression.max_results is not None:
            ids = finder.ids()
            predicate: Predicate | None = Not(Attr(ID_FIELD).in_(ids)) if ids else None
            return ResultSet(self, Query(predicate=predicate, ordering=expression.ordering))
        if expression.predicate is None:
            return ResultSet(self, Query(max_results=0))
        return ResultSet(self, Query(predicate=Not(expression.predicate), ordering=expression.ordering))
