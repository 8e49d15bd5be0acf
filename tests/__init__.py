"""
Document register test suite.

This package contains:
- unit/: Unit tests (in-memory storage, no network)
- integration/: File storage and HTTP API tests
"""
