"""State stores for the query middleware.

This package provides the store protocol the middleware reads query records
and entities from, and an in-memory reducer store implementing it.

Available Stores:
    - MemoryStore: Dictionary-backed store with pure reducers
"""

from query_middleware.store.base import (
    Store,
    select_entities,
    select_pending_queries,
    select_queries,
)
from query_middleware.store.memory import MemoryStore, reduce, reduce_entities, reduce_queries

__all__ = [
    "Store",
    "MemoryStore",
    "reduce",
    "reduce_entities",
    "reduce_queries",
    "select_entities",
    "select_pending_queries",
    "select_queries",
]
