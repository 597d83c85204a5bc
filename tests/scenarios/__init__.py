"""Conformance test scenarios for the query middleware.

This package contains end-to-end scenario tests that drive the middleware
through a store and a transport. Each scenario tests a specific aspect of
request orchestration: deduplication, retries, optimistic updates,
cancellation and the httpx transport.
"""
