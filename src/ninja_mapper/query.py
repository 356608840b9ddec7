"""Immutable query expressions: a predicate tree plus ordering and limit.

A :class:`Query` is a plain value. Adapters interpret it (the memory adapter
evaluates it in Python, the SQL adapter compiles it to SQLAlchemy clauses, the
Mongo adapter to a filter document); repositories only build and combine them.

Example::

    Query().filter(user_id=7).where(Attr("rank") >= 10).order_by(desc("rank")).limit(5)
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class Op(str, Enum):
    """Comparison operators understood by every adapter."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"
    IN = "in"


class Predicate:
    """Base class for filter nodes; supports ``&``, ``|`` and ``~``."""

    def __and__(self, other: Predicate) -> Predicate:
        return and_(self, other)

    def __or__(self, other: Predicate) -> Predicate:
        return or_(self, other)

    def __invert__(self) -> Predicate:
        return Not(self)


@dataclass(frozen=True)
class Compare(Predicate):
    field: str
    op: Op
    value: Any


@dataclass(frozen=True)
class And(Predicate):
    items: tuple[Predicate, ...]


@dataclass(frozen=True)
class Or(Predicate):
    items: tuple[Predicate, ...]


@dataclass(frozen=True)
class Not(Predicate):
    item: Predicate


def and_(*predicates: Predicate | None) -> Predicate | None:
    """Conjunction of the given predicates, flattening nested ``And`` nodes.

    ``None`` entries are skipped; returns ``None`` when nothing is left.
    """
    items: list[Predicate] = []
    for pred in predicates:
        if pred is None:
            continue
        if isinstance(pred, And):
            items.extend(pred.items)
        else:
            items.append(pred)
    if not items:
        return None
    if len(items) == 1:
        return items[0]
    return And(tuple(items))


def or_(*predicates: Predicate) -> Predicate:
    items: list[Predicate] = []
    for pred in predicates:
        if isinstance(pred, Or):
            items.extend(pred.items)
        else:
            items.append(pred)
    if len(items) == 1:
        return items[0]
    return Or(tuple(items))


class Attr:
    """Reference to a record attribute used to build comparisons.

    ``Attr("rank") > 5`` yields ``Compare("rank", Op.GT, 5)``.
    """

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __eq__(self, value: object) -> Compare:  # type: ignore[override]
        return Compare(self.name, Op.EQ, value)

    def __ne__(self, value: object) -> Compare:  # type: ignore[override]
        return Compare(self.name, Op.NE, value)

    def __gt__(self, value: Any) -> Compare:
        return Compare(self.name, Op.GT, value)

    def __ge__(self, value: Any) -> Compare:
        return Compare(self.name, Op.GE, value)

    def __lt__(self, value: Any) -> Compare:
        return Compare(self.name, Op.LT, value)

    def __le__(self, value: Any) -> Compare:
        return Compare(self.name, Op.LE, value)

    def in_(self, values: Iterable[Any]) -> Compare:
        return Compare(self.name, Op.IN, tuple(values))

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True)
class Sort:
    field: str
    descending: bool = False


def asc(name: str) -> Sort:
    return Sort(str(name))


def desc(name: str) -> Sort:
    return Sort(str(name), descending=True)


class Ordering:
    """Ordering handle passed as the optional second argument of a finder block."""

    asc = staticmethod(asc)
    desc = staticmethod(desc)


@dataclass(frozen=True)
class Query:
    """Immutable filter/order/limit expression.

    Every builder method returns a new ``Query``; the receiver is never
    modified, so a finder can hand out the same base query safely.
    """

    predicate: Predicate | None = None
    ordering: tuple[Sort, ...] = ()
    max_results: int | None = None

    def where(self, *predicates: Predicate) -> Query:
        """Narrow the query with additional predicates (AND)."""
        return replace(self, predicate=and_(self.predicate, *predicates))

    def filter(self, criteria: dict[str, Any] | None = None, /, **equals: Any) -> Query:
        """Narrow the query with attribute equality checks.

        Accepts a mapping, keyword arguments, or both.
        """
        merged = {**(criteria or {}), **equals}
        return self.where(*(Compare(name, Op.EQ, value) for name, value in merged.items()))

    def exclude(self, *predicates: Predicate) -> Query:
        """Narrow the query to records matching none of the given predicates."""
        combined = and_(*predicates)
        if combined is None:
            return self
        return self.where(Not(combined))

    def order_by(self, *sorts: Sort | str) -> Query:
        """Replace the ordering; bare strings sort ascending."""
        return replace(self, ordering=tuple(s if isinstance(s, Sort) else asc(s) for s in sorts))

    def limit(self, count: int) -> Query:
        if count < 0:
            raise ValueError(f"limit must be >= 0, got {count}")
        return replace(self, max_results=count)

    def merge(self, other: Query) -> Query:
        """Combine two queries: predicates are AND-ed, ``other``'s ordering
        wins when it has one, and the tighter limit is kept.
        """
        limits = [n for n in (self.max_results, other.max_results) if n is not None]
        return Query(
            predicate=and_(self.predicate, other.predicate),
            ordering=other.ordering or self.ordering,
            max_results=min(limits) if limits else None,
        )

    def fields(self) -> set[str]:
        """Return every attribute name referenced by the predicate and ordering."""
        names = {sort.field for sort in self.ordering}
        if self.predicate is not None:
            _collect_fields(self.predicate, names)
        return names


def _collect_fields(pred: Predicate, names: set[str]) -> None:
    if isinstance(pred, Compare):
        names.add(pred.field)
    elif isinstance(pred, (And, Or)):
        for item in pred.items:
            _collect_fields(item, names)
    elif isinstance(pred, Not):
        _collect_fields(pred.item, names)
