"""
Kyoto Tycoon SDK - A Python client for the Kyoto Tycoon RPC protocol.

This SDK talks to a Kyoto Tycoon server over its HTTP RPC interface.

Supports:
- Record commands (get/set/add/replace/append/remove/cas/increment)
- Bulk commands and server side scripts
- Four wire encodings (form, raw TSV, URL/base64/quoted-printable TSV)
- Prefix and regex matching
- Lazy record iteration with server cursors
- Direct REST-style record access with expiration headers
"""

from typing import Any

from .config import ConnectionConfig
from .connection.base import BaseKyotoConnection, TransportResponse
from .connection.http import HTTPConnection
from .cursor import CursorRegistry
from .iterator import RecordIterator, RecordScan
from .protocol.codec import WireEncoding
from .protocol.rpc import RPCMethod, RPCRequest, RPCResponse
from .types import (
    Endpoint,
    MatchResult,
    Record,
    RecordInfo,
    RestResponse,
)
from .exceptions import (
    KyotoError,
    ConnectionError,
    TimeoutError,
    ProtocolError,
    MissingFieldError,
    ImplementationError,
    InconsistencyError,
)

__version__ = "0.1.0"
__all__ = [
    # Connections
    "BaseKyotoConnection",
    "HTTPConnection",
    "TransportResponse",
    "ConnectionConfig",
    # Iteration
    "CursorRegistry",
    "RecordIterator",
    "RecordScan",
    # Protocol
    "WireEncoding",
    "RPCMethod",
    "RPCRequest",
    "RPCResponse",
    # Types
    "Endpoint",
    "MatchResult",
    "Record",
    "RecordInfo",
    "RestResponse",
    # Exceptions
    "KyotoError",
    "ConnectionError",
    "TimeoutError",
    "ProtocolError",
    "MissingFieldError",
    "ImplementationError",
    "InconsistencyError",
]


class KyotoTycoon:
    """
    Factory class for creating Kyoto Tycoon connections.

    Usage:
        # Default server, first database
        with KyotoTycoon.http() as kt:
            kt.set("japan", "tokyo")
            print(kt.get("japan"))

        # Named database, base64 column encoding
        with KyotoTycoon.http("http://kt.local:1979/user.kch", encoding="tab-base64") as kt:
            for key, value in kt.scan_prefix("user:"):
                print(key, value)
    """

    @staticmethod
    def http(uri: str = "http://localhost:1978", **kwargs: Any) -> HTTPConnection:
        """Create an HTTP connection."""
        return HTTPConnection(uri, **kwargs)

    @staticmethod
    def from_config(config: ConnectionConfig, **kwargs: Any) -> HTTPConnection:
        """Create an HTTP connection from a ``ConnectionConfig``."""
        return HTTPConnection(
            config.url,
            encoding=config.encoding,
            connect_timeout=config.connect_timeout,
            keepalive=config.keepalive,
            **kwargs,
        )
