"""Core orchestration logic of the query middleware.

This package contains the request and mutation lifecycle:
- Backoff: tenacity retry policy, delays and retry eligibility
- Registry: in-flight network handles keyed by query key
- Reconciler: pure merge, optimistic update and rollback over entities
- Query: fetch deduplication, retry loop and success/failure reporting
- Mutation: optimistic apply, single attempt, merge or rollback
- Cancellation: aborting one or all pending queries
- Middleware: the entry point wiring the controllers to a transport and a store

The core logic is independent of the transport and the store, which are
reached only through the protocols in query_middleware.transport and
query_middleware.store.
"""

from query_middleware.core.middleware import QueryMiddleware

__all__ = ["QueryMiddleware"]
