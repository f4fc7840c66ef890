"""
Kyoto Tycoon SDK Exceptions.

Custom exception hierarchy for the SDK.

Programming errors (unknown RPC command, malformed URI, non-string
parameters) are raised as built-in ``ValueError``/``TypeError`` and are
not part of this hierarchy.
"""


class KyotoError(Exception):
    """Base exception for all Kyoto Tycoon SDK errors."""

    def __init__(self, message: str, code: int | None = None, uri: str | None = None):
        self.message = message
        self.code = code
        self.uri = uri
        super().__init__(message)


class ConnectionError(KyotoError):
    """Raised when the exchange with the server cannot be completed."""

    pass


class TimeoutError(ConnectionError):
    """Raised when connecting to or reading from the server times out."""

    pass


class ProtocolError(KyotoError):
    """Raised on a malformed request (400) or an unparseable response."""

    pass


class MissingFieldError(ProtocolError):
    """Raised when a successful response lacks a field the caller requires."""

    def __init__(self, field: str, uri: str | None = None):
        self.field = field
        super().__init__(f"Response is missing the '{field}' field", code=200, uri=uri)


class ImplementationError(KyotoError):
    """Raised when the operation is not implemented by the database storage type (501)."""

    pass


class InconsistencyError(KyotoError):
    """
    Raised when a record precondition is not met (450).

    Examples are an existing record on ``add``, a mismatching old value on
    ``cas`` or a missing record on ``get``. This is an expected outcome and
    callers usually handle it as a normal branch.
    """

    def __init__(self, message: str, detail: str = "", code: int | None = 450, uri: str | None = None):
        self.detail = detail
        super().__init__(message, code, uri)
