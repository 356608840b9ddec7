"""Persistence adapters for each storage engine."""

from __future__ import annotations

import uuid
from typing import Any

ID_FIELD = "id"


def _new_id() -> str:
    """Generate a record id for inserts that did not supply one."""
    return uuid.uuid4().hex


def _split_id(attributes: dict[str, Any]) -> tuple[Any, dict[str, Any]]:
    """Separate the ``id`` entry from the remaining attribute values."""
    values = {k: v for k, v in attributes.items() if k != ID_FIELD}
    return attributes.get(ID_FIELD), values
