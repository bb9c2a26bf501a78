"""
Galaxi catalog sync test suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (SQLite, in-memory bus and cache)
- e2e/: End-to-end tests against Kafka and Redis (opt-in)
"""
