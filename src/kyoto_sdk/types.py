"""
Type definitions for Kyoto Tycoon SDK responses.

Provides strongly-typed wrappers around decoded parameter maps instead of raw dicts.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from .exceptions import MissingFieldError

DEFAULT_URI = "http://localhost:1978"
DEFAULT_PORT = 1978


def _optional_int(value: str | None) -> int | None:
    """Parse an optional numeric field; empty means absent."""
    if value is None or value == "":
        return None
    return int(value)


def _required(data: dict[str, str], name: str) -> str:
    """Read a field the server must always send."""
    try:
        return data[name]
    except KeyError:
        raise MissingFieldError(name) from None


@dataclass(frozen=True)
class Endpoint:
    """
    Target server and optional database selector.

    Attributes:
        scheme: "http" or "https"
        host: Hostname or IP of the server
        port: TCP port of the server
        database: Name or ID of the database (URI path), None if not selected
    """

    scheme: str
    host: str
    port: int
    database: str | None = None

    @classmethod
    def parse(cls, uri: str = DEFAULT_URI) -> "Endpoint":
        """
        Parse a connection URI such as ``http://kt.local:1979/user.kch``.

        Raises:
            ValueError: If the URI has no host or an unsupported scheme
        """
        if not isinstance(uri, str):
            raise TypeError(f"URI must be a string, got {type(uri).__name__}")
        if "://" not in uri:
            uri = f"http://{uri}"

        parts = urlsplit(uri)
        if parts.scheme not in ("http", "https"):
            raise ValueError(f"Invalid URI scheme '{parts.scheme}'. Must be 'http' or 'https'.")
        if not parts.hostname:
            raise ValueError(f"Invalid URI '{uri}': no host.")
        try:
            port = parts.port
        except ValueError as e:
            raise ValueError(f"Invalid URI '{uri}': {e}") from e

        database = parts.path.strip("/")
        return cls(
            scheme=parts.scheme,
            host=parts.hostname,
            port=port if port is not None else DEFAULT_PORT,
            database=database or None,
        )

    @property
    def base_url(self) -> str:
        """Base URL for HTTP requests, without the database path."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{self.scheme}://{host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Record:
    """A key/value record with its absolute expiration time (None if it never expires)."""

    key: str
    value: str
    xt: int | None = None

    @classmethod
    def from_rpc_result(cls, key: str, data: dict[str, str]) -> "Record":
        """Build from a ``get`` or ``cur_get`` result."""
        return cls(
            key=data.get("key", key),
            value=_required(data, "value"),
            xt=_optional_int(data.get("xt")),
        )


@dataclass(frozen=True)
class RecordInfo:
    """Size and expiration of a record, as returned by ``check``."""

    size: int
    xt: int | None = None

    @classmethod
    def from_rpc_result(cls, data: dict[str, str]) -> "RecordInfo":
        return cls(size=int(_required(data, "vsiz")), xt=_optional_int(data.get("xt")))


@dataclass
class MatchResult:
    """
    Keys matching a prefix or regular expression query.

    The keys are a snapshot taken when the query ran; they are not live
    against later mutations.

    Attributes:
        keys: Matching keys in server order
        count: Number of keys reported by the server
    """

    keys: list[str] = field(default_factory=list)
    count: int = 0

    @classmethod
    def from_rpc_result(cls, data: dict[str, str]) -> "MatchResult":
        """Parse from a ``match_prefix``/``match_regex`` result (keys are sent as ``_key``)."""
        count = int(_required(data, "num"))
        keys = [name[1:] for name in data if name.startswith("_")]
        return cls(keys=keys, count=count)

    def __len__(self) -> int:
        return len(self.keys)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys)


@dataclass
class RestResponse:
    """
    Response of a direct record access (``/<key>``).

    Attributes:
        body: Raw record value (empty for HEAD/PUT/DELETE)
        headers: Response headers
        xt: Absolute expiration time from the ``X-Kt-Xt`` header, if any
        date: Server ``Date`` header, if any
    """

    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    xt: int | None = None
    date: str | None = None

    @classmethod
    def from_headers(cls, body: bytes, headers: dict[str, Any]) -> "RestResponse":
        lowered = {str(k).lower(): str(v) for k, v in headers.items()}
        return cls(
            body=body,
            headers=dict(headers),
            xt=_optional_int(lowered.get("x-kt-xt")),
            date=lowered.get("date"),
        )

    @property
    def text(self) -> str:
        """Body decoded as UTF-8."""
        return self.body.decode("utf-8")


def unprefix(data: dict[str, str], prefix: str = "_") -> dict[str, str]:
    """Return the fields starting with ``prefix``, with the prefix stripped."""
    return {name[len(prefix) :]: value for name, value in data.items() if name.startswith(prefix)}


def prefix_keys(data: dict[str, str], prefix: str = "_") -> dict[str, str]:
    """Return ``data`` with every key prefixed, as bulk and script commands expect."""
    return {f"{prefix}{name}": value for name, value in data.items()}


__all__ = [
    "DEFAULT_URI",
    "DEFAULT_PORT",
    "Endpoint",
    "Record",
    "RecordInfo",
    "MatchResult",
    "RestResponse",
    "unprefix",
    "prefix_keys",
]
