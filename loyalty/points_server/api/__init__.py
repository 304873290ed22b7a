"""
API module for the Points Server.

This module provides the external interfaces:
- PointsServicer: the caller-facing operations
- HTTP app (FastAPI) over the servicer

Invariants:
    - Callers are authenticated upstream and identified by public id
    - HTTP endpoints have the same semantics as the servicer methods
    - Error responses carry the stable error code, never store internals
"""

from .http_server import create_http_app
from .servicer import PointsServicer
from .settings import HttpSettings

__all__ = [
    "HttpSettings",
    "PointsServicer",
    "create_http_app",
]
