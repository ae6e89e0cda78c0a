"""Persistence layer for flowline workflows, tasks and results."""

from __future__ import annotations

import os
from typing import Optional

from ..config import FlowlineConfig, load_config
from .inmemory import InMemoryEntityStore
from .postgres import PostgresEntityStore
from .repository import EntityStore
from .sqlite import SQLiteEntityStore

_store_instance: EntityStore | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[FlowlineConfig] = None
) -> EntityStore:
    """Factory function to obtain an entity store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``FLOWLINE_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("FLOWLINE_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _store_instance = InMemoryEntityStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteEntityStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        _store_instance = PostgresEntityStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


__all__ = [
    "EntityStore",
    "InMemoryEntityStore",
    "SQLiteEntityStore",
    "PostgresEntityStore",
    "get_repository",
]
