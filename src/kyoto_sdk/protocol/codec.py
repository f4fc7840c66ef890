"""
Wire codec for Kyoto Tycoon parameter maps.

Request bodies are encoded either as a standard form (``key=value&...``) or
as tab-separated rows (``key<TAB>value``). Each tab-separated field can
optionally be column-encoded with URL, base64 or quoted-printable encoding
(announced by the ``colenc`` parameter of the content type).
"""

import base64
import binascii
from collections.abc import Callable, Mapping
from enum import Enum
from urllib.parse import parse_qsl, quote, unquote_plus, urlencode

from ..exceptions import ProtocolError

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
TSV_CONTENT_TYPE = "text/tab-separated-values"

_UNSAFE_RAW = ("\t", "\r", "\n")


class WireEncoding(str, Enum):
    """Request body encodings accepted by the server."""

    FORM_URL = "form-url"
    TAB = "tab"
    TAB_URL = "tab-url"
    TAB_BASE64 = "tab-base64"
    TAB_QUOTED = "tab-quoted"

    @property
    def colenc(self) -> str | None:
        """Column encoding letter, or None for the unencoded forms."""
        return _COLENC.get(self)

    @property
    def content_type(self) -> str:
        """Value of the ``Content-Type`` header for this encoding."""
        if self is WireEncoding.FORM_URL:
            return FORM_CONTENT_TYPE
        if self.colenc:
            return f"{TSV_CONTENT_TYPE}; colenc={self.colenc}"
        return TSV_CONTENT_TYPE

    @classmethod
    def from_content_type(cls, content_type: str | None) -> "WireEncoding":
        """
        Select the encoding announced by a ``Content-Type`` header.

        Raises:
            ProtocolError: If the content type is missing or unknown
        """
        if not content_type:
            raise ProtocolError("Response has a body but no content type")

        media, _, rest = content_type.partition(";")
        media = media.strip().lower()
        colenc = None
        for param in rest.split(";"):
            name, _, value = param.partition("=")
            if name.strip().lower() == "colenc":
                colenc = value.strip().strip('"').upper()

        if media == FORM_CONTENT_TYPE and colenc is None:
            return cls.FORM_URL
        if media == TSV_CONTENT_TYPE:
            if colenc is None:
                return cls.TAB
            for encoding, letter in _COLENC.items():
                if letter == colenc:
                    return encoding
        raise ProtocolError(f"Unknown content type '{content_type}'")


_COLENC = {
    WireEncoding.TAB_URL: "U",
    WireEncoding.TAB_BASE64: "B",
    WireEncoding.TAB_QUOTED: "Q",
}

# Encodings the server may reply with on the RPC endpoint.
RESPONSE_ENCODINGS = frozenset(
    {
        WireEncoding.TAB,
        WireEncoding.TAB_URL,
        WireEncoding.TAB_BASE64,
        WireEncoding.TAB_QUOTED,
    }
)


# Field transforms


def _raw_encode(text: str) -> str:
    if any(char in text for char in _UNSAFE_RAW):
        raise ValueError(f"Field {text!r} contains a tab or line break; use a column encoding")
    return text


def _url_encode(text: str) -> str:
    return quote(text, safe="")


def _url_decode(text: str) -> str:
    return unquote_plus(text, errors="strict")


def _base64_encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _base64_decode(text: str) -> str:
    return base64.b64decode(text.encode("ascii"), validate=True).decode("utf-8")


def _quoted_encode(text: str) -> str:
    # Line breaks are escaped and soft breaks dropped so a field stays on one row
    encoded = binascii.b2a_qp(text.encode("utf-8"), quotetabs=True, istext=False)
    return encoded.replace(b"=\r\n", b"").replace(b"=\n", b"").decode("ascii")


def _quoted_decode(text: str) -> str:
    return binascii.a2b_qp(text.encode("ascii")).decode("utf-8")


_FIELD_ENCODERS: dict[WireEncoding, Callable[[str], str]] = {
    WireEncoding.TAB: _raw_encode,
    WireEncoding.TAB_URL: _url_encode,
    WireEncoding.TAB_BASE64: _base64_encode,
    WireEncoding.TAB_QUOTED: _quoted_encode,
}

_FIELD_DECODERS: dict[WireEncoding, Callable[[str], str]] = {
    WireEncoding.TAB: lambda text: text,
    WireEncoding.TAB_URL: _url_decode,
    WireEncoding.TAB_BASE64: _base64_decode,
    WireEncoding.TAB_QUOTED: _quoted_decode,
}


def encode(encoding: WireEncoding, params: Mapping[str, str]) -> bytes:
    """
    Encode a parameter map as a request body.

    Args:
        encoding: Wire encoding to use
        params: String-to-string parameter map

    Returns:
        The encoded body

    Raises:
        ValueError: If a field cannot be represented with ``WireEncoding.TAB``
    """
    encoding = WireEncoding(encoding)
    if encoding is WireEncoding.FORM_URL:
        return urlencode(list(params.items())).encode("ascii")

    transform = _FIELD_ENCODERS[encoding]
    rows = [f"{transform(key)}\t{transform(value)}" for key, value in params.items()]
    return "\r\n".join(rows).encode("utf-8")


def decode(content_type: str | None, body: bytes) -> dict[str, str]:
    """
    Decode a body according to its declared content type.

    Rows are separated by LF or CRLF. When a key repeats, the last value wins.

    Raises:
        ProtocolError: On an unknown content type, a row without a TAB,
            or a field that does not decode
    """
    if not body:
        return {}
    return decode_as(WireEncoding.from_content_type(content_type), body)


def decode_as(encoding: WireEncoding, body: bytes) -> dict[str, str]:
    """Decode a body with a known encoding."""
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Response body is not valid UTF-8: {e}") from e

    if encoding is WireEncoding.FORM_URL:
        try:
            return dict(parse_qsl(text, keep_blank_values=True, strict_parsing=bool(text), errors="strict"))
        except (ValueError, UnicodeDecodeError) as e:
            raise ProtocolError(f"Malformed form body: {e}") from e

    transform = _FIELD_DECODERS[encoding]
    result: dict[str, str] = {}
    for number, row in enumerate(text.split("\n"), start=1):
        row = row.removesuffix("\r")
        if not row:
            continue
        key, tab, value = row.partition("\t")
        if not tab:
            raise ProtocolError(f"Malformed row {number}: no field separator")
        try:
            result[transform(key)] = transform(value)
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise ProtocolError(f"Malformed row {number}: {e}") from e
    return result


__all__ = [
    "FORM_CONTENT_TYPE",
    "TSV_CONTENT_TYPE",
    "RESPONSE_ENCODINGS",
    "WireEncoding",
    "encode",
    "decode",
    "decode_as",
]
