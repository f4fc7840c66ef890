"""
Kyoto Tycoon SDK Connection Module.

Provides the HTTP connection implementation.
"""

from .base import BaseKyotoConnection, TransportResponse
from .http import HTTPConnection

__all__ = [
    "BaseKyotoConnection",
    "HTTPConnection",
    "TransportResponse",
]
