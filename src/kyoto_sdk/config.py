"""
Connection configuration dataclass.

Provides an immutable configuration container that can be handed to
``KyotoTycoon.from_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass

from .connection.http import DEFAULT_CONNECT_TIMEOUT, DEFAULT_KEEPALIVE
from .protocol.codec import WireEncoding
from .types import DEFAULT_URI


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Immutable configuration for a Kyoto Tycoon connection.

    Attributes:
        url: Server URL; its path selects the database.
        encoding: Wire encoding of request bodies.
        connect_timeout: Seconds allowed to establish the connection.
        keepalive: Idle timeout and keep-alive expiry, in seconds.
    """

    url: str = DEFAULT_URI
    encoding: WireEncoding = WireEncoding.FORM_URL
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    keepalive: float = DEFAULT_KEEPALIVE


__all__ = ["ConnectionConfig"]
