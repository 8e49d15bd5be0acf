"""
API module for the document register.

This module provides the external interface:
- HTTP server (FastAPI REST API under /api/v1)

Invariants:
    - Handlers call only the public register and comparator methods
    - Register errors map to JSON error bodies

How to change safely:
    - Add new endpoints, don't change the shape of existing responses
"""

from .http_server import create_http_app

__all__ = [
    "create_http_app",
]
