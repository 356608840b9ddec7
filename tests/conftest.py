"""Shared fixtures: one repository set per storage backend."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
import sqlalchemy as sa
from ninja_mapper import InMemoryAdapter, RepositoryConfig, SQLAdapter, reset_config
from ninja_mapper.protocols import Adapter
from sample_domain import (
    Article,
    ArticleRepository,
    Movie,
    MovieRepository,
    Ticket,
    TicketRepository,
    User,
    UserRepository,
)


@pytest.fixture(autouse=True)
def _reset_default_config() -> Iterator[None]:
    yield
    reset_config()


@pytest.fixture
def sqlite_engine() -> Iterator[sa.Engine]:
    engine = sa.create_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def sql_adapter(sqlite_engine: sa.Engine) -> SQLAdapter:
    adapter = SQLAdapter(sqlite_engine)
    adapter.ensure_table("users", User)
    adapter.ensure_table("articles", Article)
    adapter.ensure_table("film", Movie)
    adapter.ensure_table("tickets", Ticket)
    return adapter


@pytest.fixture(params=["memory", "sql"])
def adapter(request: pytest.FixtureRequest) -> Adapter:
    """Every repository test runs once per backend."""
    if request.param == "memory":
        return InMemoryAdapter()
    return request.getfixturevalue("sql_adapter")


@pytest.fixture
def config(adapter: Adapter) -> RepositoryConfig:
    return RepositoryConfig(adapter=adapter)


@pytest.fixture
def users(config: RepositoryConfig) -> UserRepository:
    return UserRepository(config)


@pytest.fixture
def articles(config: RepositoryConfig) -> ArticleRepository:
    return ArticleRepository(config)


@pytest.fixture
def movies(config: RepositoryConfig) -> MovieRepository:
    return MovieRepository(config)


@pytest.fixture
def tickets(config: RepositoryConfig) -> TicketRepository:
    return TicketRepository(config)
