"""
HTTP Connection Implementation for Kyoto Tycoon SDK.

Provides a persistent keep-alive HTTP connection to a Kyoto Tycoon server.
"""

import logging
from collections.abc import Mapping
from typing import Self

import httpx

from .base import BaseKyotoConnection, TransportResponse
from ..cursor import CursorRegistry
from ..exceptions import ConnectionError, TimeoutError
from ..protocol.codec import WireEncoding
from ..types import DEFAULT_URI

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 3.0
DEFAULT_KEEPALIVE = 30.0


class HTTPConnection(BaseKyotoConnection):
    """
    HTTP-based connection to Kyoto Tycoon.

    A single keep-alive connection is reused for every request. Requests
    are sent one at a time; the connection is not safe to share between
    threads.

    Usage:
        with HTTPConnection("http://localhost:1978/user.kch") as kt:
            kt.set("japan", "tokyo")
            kt.get("japan")
    """

    def __init__(
        self,
        uri: str = DEFAULT_URI,
        encoding: WireEncoding | str = WireEncoding.FORM_URL,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        keepalive: float = DEFAULT_KEEPALIVE,
        cursors: CursorRegistry | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize HTTP connection.

        Args:
            uri: Kyoto Tycoon URL (e.g., "http://localhost:1978" or "http://kt.local:1979/user.kch")
            encoding: Wire encoding of request bodies
            connect_timeout: Seconds allowed to establish the connection
            keepalive: Seconds a request may stay idle, also the keep-alive expiry
            cursors: Registry of cursor identifiers
            transport: Optional httpx transport (e.g. ``httpx.MockTransport`` in tests)
        """
        if connect_timeout <= 0 or keepalive <= 0:
            raise ValueError("Timeouts must be > 0")

        super().__init__(uri, encoding, cursors)
        self.connect_timeout = connect_timeout
        self.keepalive = keepalive
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def timeout(self) -> httpx.Timeout:
        """Timeouts applied to every request."""
        return httpx.Timeout(self.keepalive, connect=self.connect_timeout)

    def connect(self) -> Self:
        """Open the HTTP client. Returns self for fluent API."""
        if self._connected:
            return self

        self._client = httpx.Client(
            base_url=self.endpoint.base_url,
            timeout=self.timeout,
            limits=httpx.Limits(max_connections=1, max_keepalive_connections=1, keepalive_expiry=self.keepalive),
            transport=self._transport,
        )
        self._connected = True
        logger.debug(f"Connected to {self.endpoint.base_url}")
        return self

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            self._client.close()
            self._client = None
        self._connected = False

    def connect_to(self, uri: str) -> Self:
        """Point later calls at another server or database."""
        super().connect_to(uri)
        if self._client:
            self._client.base_url = httpx.URL(self.endpoint.base_url)
        return self

    def _execute(
        self,
        method: str,
        path: str,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        """
        Send one request and read the whole reply.

        Raises:
            ConnectionError: If not connected or the request fails
            TimeoutError: If connecting or reading times out
        """
        if not self._client:
            raise ConnectionError("Not connected. Call connect() first.", uri=self.uri)

        try:
            response = self._client.request(method, path, content=content, headers=headers)
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Request to {self.uri} timed out: {e}", uri=self.uri) from e
        except httpx.RequestError as e:
            raise ConnectionError(f"Couldn't connect to Kyoto Tycoon server {self.uri}. {e}", uri=self.uri) from e

        return TransportResponse(
            status_code=response.status_code,
            content_type=response.headers.get("Content-Type"),
            content=response.content,
            headers=dict(response.headers),
        )
