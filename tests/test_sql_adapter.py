"""Tests for the SQLAlchemy adapter against in-memory SQLite."""

from __future__ import annotations

import datetime
from collections.abc import Iterator
from typing import Any

import pytest
import sqlalchemy as sa
from ninja_mapper import (
    ConfigurationError,
    ConnectionFailedError,
    DuplicateEntityError,
    QueryError,
    SQLAdapter,
)
from ninja_mapper.adapters.sql import _column_type, _order_clauses
from ninja_mapper.query import Attr, Query, desc
from sample_domain import Article, Ticket, User
from sqlalchemy.dialects import mysql, postgresql
from sqlalchemy.exc import IntegrityError


@pytest.fixture
def engine() -> Iterator[sa.Engine]:
    engine = sa.create_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def adapter(engine: sa.Engine) -> SQLAdapter:
    adapter = SQLAdapter(engine)
    adapter.ensure_table("users", User)
    adapter.ensure_table("articles", Article)
    adapter.ensure_table("tickets", Ticket)
    return adapter


@pytest.fixture
def accounts_table(engine: sa.Engine) -> sa.Table:
    """A pre-existing table with a unique column, created outside the adapter."""
    metadata = sa.MetaData()
    table = sa.Table(
        "accounts",
        metadata,
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("email", sa.String(255), unique=True),
    )
    metadata.create_all(engine)
    return table


@pytest.fixture
def seeded(adapter: SQLAdapter) -> SQLAdapter:
    adapter.insert("articles", {"id": "a", "title": "Lotus", "rank": 10, "user_id": "u1"})
    adapter.insert("articles", {"id": "b", "title": "Threads", "rank": 4, "user_id": "u1"})
    adapter.insert("articles", {"id": "c", "title": "Love", "rank": 7, "user_id": "u2"})
    adapter.insert("articles", {"id": "d", "title": "Draft", "rank": None, "user_id": None})
    return adapter


def _ids(rows: list[dict[str, Any]]) -> set[str]:
    return {row["id"] for row in rows}


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("annotation", "expected"),
    [
        (int, sa.Integer),
        (int | None, sa.Integer),
        (bool, sa.Boolean),
        (float, sa.Float),
        (str | None, sa.String),
        (datetime.datetime, sa.DateTime),
        (datetime.date, sa.Date),
        (bytes, sa.LargeBinary),
        (dict[str, Any], sa.JSON),
        (list[str] | None, sa.JSON),
        (Any, sa.String),
        (int | str, sa.String),
    ],
)
def test_column_type_mapping(annotation, expected):
    assert isinstance(_column_type(annotation), expected)


def test_ensure_table_mirrors_entity_attributes(adapter):
    table = adapter.ensure_table("articles", Article)
    assert [c.name for c in table.columns] == Article.attributes()
    assert table.c.id.primary_key


def test_ensure_table_is_idempotent(adapter):
    first = adapter.ensure_table("users", User)
    assert adapter.ensure_table("users", User) is first


def test_existing_table_is_reflected(engine, accounts_table):
    adapter = SQLAdapter(engine)
    adapter.insert("accounts", {"id": "1", "email": "a@test.com"})
    assert adapter.find_by_id("accounts", "1") == {"id": "1", "email": "a@test.com"}


def test_missing_table_raises_configuration_error(engine):
    adapter = SQLAdapter(engine)
    with pytest.raises(ConfigurationError, match="Table does not exist"):
        adapter.count("ghosts")


def test_table_without_id_column_raises_configuration_error(engine):
    with engine.begin() as conn:
        conn.execute(sa.text("CREATE TABLE logs (message TEXT)"))
    with pytest.raises(ConfigurationError, match="no 'id' column"):
        SQLAdapter(engine).scan("logs")


def test_unreachable_database_raises_connection_failed(tmp_path):
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'missing' / 'app.db'}")
    with pytest.raises(ConnectionFailedError) as exc_info:
        SQLAdapter(engine).count("users")
    assert exc_info.value.__cause__ is not None
    engine.dispose()


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


def test_insert_generates_hex_id_for_string_keys(adapter):
    record_id = adapter.insert("users", {"name": "L"})
    assert isinstance(record_id, str)
    assert len(record_id) == 32
    assert adapter.find_by_id("users", record_id) == {"id": record_id, "name": "L", "age": None}


def test_insert_lets_database_assign_integer_keys(adapter):
    first = adapter.insert("tickets", {"subject": "one"})
    second = adapter.insert("tickets", {"subject": "two"})
    assert isinstance(first, int)
    assert second == first + 1


def test_insert_rejects_attributes_without_column(adapter):
    with pytest.raises(QueryError, match="No column for attribute\(s\) 'nickname'") as exc_info:
        adapter.insert("users", {"name": "L", "nickname": "el"})
    assert exc_info.value.operation == "create"
    assert adapter.count("users") == 0


def test_update_rejects_attributes_without_column(adapter):
    adapter.insert("users", {"id": "1", "name": "L"})
    with pytest.raises(QueryError, match="'nickname'") as exc_info:
        adapter.update("users", "1", {"name": "Luca", "nickname": "el"})
    assert exc_info.value.operation == "update"
    assert adapter.find_by_id("users", "1")["name"] == "L"


def test_insert_duplicate_primary_key_raises(adapter):
    adapter.insert("users", {"id": "1", "name": "L"})
    with pytest.raises(DuplicateEntityError) as exc_info:
        adapter.insert("users", {"id": "1", "name": "MG"})
    assert exc_info.value.operation == "create"
    assert isinstance(exc_info.value.__cause__, IntegrityError)


def test_insert_unique_violation_raises(engine, accounts_table):
    adapter = SQLAdapter(engine)
    adapter.insert("accounts", {"id": "1", "email": "same@test.com"})
    with pytest.raises(DuplicateEntityError):
        adapter.insert("accounts", {"id": "2", "email": "same@test.com"})


def test_update_unique_violation_raises(engine, accounts_table):
    adapter = SQLAdapter(engine)
    adapter.insert("accounts", {"id": "1", "email": "a@test.com"})
    adapter.insert("accounts", {"id": "2", "email": "b@test.com"})
    with pytest.raises(DuplicateEntityError) as exc_info:
        adapter.update("accounts", "2", {"email": "a@test.com"})
    assert exc_info.value.operation == "update"


def test_update_existing_and_missing(adapter):
    adapter.insert("users", {"id": "1", "name": "L"})
    assert adapter.update("users", "1", {"name": "Luca", "age": 33}) is True
    assert adapter.find_by_id("users", "1") == {"id": "1", "name": "Luca", "age": 33}
    assert adapter.update("users", "2", {"name": "ghost"}) is False


def test_update_without_known_columns_reports_existence(adapter):
    adapter.insert("users", {"id": "1", "name": "L"})
    assert adapter.update("users", "1", {"nickname": "el"}) is True
    assert adapter.update("users", "2", {}) is False


def test_delete(adapter):
    adapter.insert("users", {"id": "1"})
    assert adapter.delete("users", "1") is True
    assert adapter.delete("users", "1") is False


def test_key_of_wrong_type_matches_nothing(adapter):
    adapter.insert("users", {"id": "1", "name": "L"})
    adapter.insert("tickets", {"id": 1, "subject": "one"})
    assert adapter.find_by_id("users", 1) is None
    assert adapter.find_by_id("tickets", "1") is None
    assert adapter.find_by_id("tickets", True) is None
    assert adapter.update("tickets", "1", {"subject": "x"}) is False
    assert adapter.delete("users", 1) is False


def test_count_and_clear(seeded):
    assert seeded.count("articles") == 4
    seeded.clear("articles")
    assert seeded.count("articles") == 0
    seeded.clear("articles")
    assert list(seeded.scan("articles")) == []


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def test_first_and_last_sort_nulls_first(seeded):
    assert seeded.first("articles", "rank")["id"] == "d"
    assert seeded.last("articles", "rank")["id"] == "a"


def test_first_on_empty_table(adapter):
    assert adapter.first("users", "name") is None


def test_run_equality_and_range(seeded):
    assert _ids(seeded.run("articles", Query().filter(user_id="u1"))) == {"a", "b"}
    assert _ids(seeded.run("articles", Query().where(Attr("rank") >= 7))) == {"a", "c"}


def test_run_not_equal_includes_nulls(seeded):
    assert _ids(seeded.run("articles", Query().where(Attr("user_id") != "u1"))) == {"c", "d"}


def test_run_not_is_exact_complement(seeded):
    predicate = Attr("rank") > 5
    matched = _ids(seeded.run("articles", Query().where(predicate)))
    excluded = _ids(seeded.run("articles", Query().where(~predicate)))
    assert matched == {"a", "c"}
    assert excluded == {"b", "d"}


def test_run_null_comparisons(seeded):
    assert _ids(seeded.run("articles", Query().filter(rank=None))) == {"d"}
    assert _ids(seeded.run("articles", Query().where(Attr("rank") != None))) == {"a", "b", "c"}  # noqa: E711


def test_run_in_and_or(seeded):
    assert _ids(seeded.run("articles", Query().where(Attr("id").in_(["a", "c"])))) == {"a", "c"}
    query = Query().where((Attr("title") == "Love") | (Attr("rank") == 4))
    assert _ids(seeded.run("articles", query)) == {"b", "c"}


def test_run_ordering_and_limit(seeded):
    rows = seeded.run("articles", Query().order_by("title").limit(2))
    assert [row["title"] for row in rows] == ["Draft", "Love"]


def test_run_limit_zero(seeded):
    assert seeded.run("articles", Query().limit(0)) == []


def test_run_unknown_column_raises_query_error(seeded):
    with pytest.raises(QueryError, match="Unknown column 'author'"):
        seeded.run("articles", Query().filter(author="L"))
    with pytest.raises(QueryError):
        seeded.run("articles", Query().order_by("author"))


def test_run_orders_nulls_first_ascending_and_last_descending(seeded):
    ascending = seeded.run("articles", Query().order_by("rank"))
    descending = seeded.run("articles", Query().order_by(desc("rank")))
    assert [row["id"] for row in ascending] == ["d", "b", "c", "a"]
    assert [row["id"] for row in descending] == ["a", "c", "b", "d"]
    assert seeded.first("articles", "rank")["id"] == "d"
    assert seeded.last("articles", "rank")["id"] == "a"


@pytest.mark.parametrize("dialect", [postgresql.dialect(), mysql.dialect()])
def test_null_ordering_does_not_rely_on_dialect_default(dialect):
    table = sa.Table(
        "scores", sa.MetaData(), sa.Column("id", sa.Integer, primary_key=True), sa.Column("rank", sa.Integer)
    )
    sql = str(sa.select(table).order_by(*_order_clauses(table.c.rank, True)).compile(dialect=dialect))
    assert "CASE WHEN" in sql
    assert "NULLS" not in sql
