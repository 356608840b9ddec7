"""Repository configuration and the process-wide default."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ninja_mapper.exceptions import ConfigurationError
from ninja_mapper.protocols import Adapter

logger = logging.getLogger(__name__)


class RepositoryConfig(BaseModel):
    """Settings a repository is constructed with."""

    adapter: Any = Field(description="Storage adapter satisfying the Adapter protocol.")
    collection: str | None = Field(default=None, description="Collection name override.")

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("adapter")
    @classmethod
    def validate_adapter(cls, v: Any) -> Any:
        if not isinstance(v, Adapter):
            raise ValueError(f"{type(v).__name__} does not implement the Adapter protocol")
        return v

    @field_validator("collection")
    @classmethod
    def validate_collection(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("collection name must not be blank")
        return v


_default_config: RepositoryConfig | None = None


def configure(adapter: Any = None, *, config: RepositoryConfig | None = None) -> RepositoryConfig:
    """Register the process-wide default configuration.

    Call once at startup, before any repository is used::

        configure(InMemoryAdapter())

    Pass either an adapter or a complete :class:`RepositoryConfig`.
    """
    global _default_config
    if config is None:
        if adapter is None:
            raise ValueError("configure() needs an adapter or a config")
        config = RepositoryConfig(adapter=adapter)
    elif adapter is not None:
        raise ValueError("configure() takes an adapter or a config, not both")
    _default_config = config
    logger.debug("Default repository adapter set to %s", type(config.adapter).__name__)
    return config


def default_config() -> RepositoryConfig:
    """Return the process-wide configuration, raising if none was registered."""
    if _default_config is None:
        raise ConfigurationError(
            collection="*",
            operation="configure",
            detail="No adapter configured. Call ninja_mapper.configure() or pass a RepositoryConfig.",
        )
    return _default_config


def reset_config() -> None:
    """Forget the process-wide configuration (used by test teardown)."""
    global _default_config
    _default_config = None
