"""Storage backends for the fulfillment path."""

from __future__ import annotations

from storefront.storage.base import Store, StoreTransaction
from storefront.storage.memory import MemoryStore

MEMORY_URL_PREFIX = "memory://"


def build_store(database_url: str, min_size: int = 1, max_size: int = 10) -> Store:
    """Construct the process-wide store for ``database_url``.

    ``memory://`` selects the in-process store; anything else is treated as a
    Postgres connection string.
    """
    if database_url.startswith(MEMORY_URL_PREFIX):
        return MemoryStore()

    from storefront.storage.postgres import PostgresStore

    return PostgresStore(database_url, min_size=min_size, max_size=max_size)


__all__ = ["MemoryStore", "Store", "StoreTransaction", "build_store"]
