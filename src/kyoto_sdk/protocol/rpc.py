"""
Kyoto Tycoon RPC Protocol Implementation.

Each RPC command is an HTTP POST to ``/rpc/<command>`` whose body is an
encoded parameter map. The reply is a parameter map in one of the
tab-separated forms, and its HTTP status tells success from failure.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field

from ..exceptions import (
    ImplementationError,
    InconsistencyError,
    ProtocolError,
)
from . import codec
from .codec import WireEncoding


# RPC Method names as constants
class RPCMethod:
    """RPC method name constants."""

    # Records
    ADD = "add"
    APPEND = "append"
    CAS = "cas"
    CHECK = "check"
    CLEAR = "clear"
    GET = "get"
    INCREMENT = "increment"
    INCREMENT_DOUBLE = "increment_double"
    REMOVE = "remove"
    REPLACE = "replace"
    SEIZE = "seize"
    SET = "set"

    # Bulk
    GET_BULK = "get_bulk"
    REMOVE_BULK = "remove_bulk"
    SET_BULK = "set_bulk"

    # Matching
    MATCH_PREFIX = "match_prefix"
    MATCH_REGEX = "match_regex"

    # Cursors
    CUR_DELETE = "cur_delete"
    CUR_GET = "cur_get"
    CUR_GET_KEY = "cur_get_key"
    CUR_GET_VALUE = "cur_get_value"
    CUR_JUMP = "cur_jump"
    CUR_JUMP_BACK = "cur_jump_back"
    CUR_REMOVE = "cur_remove"
    CUR_SET_VALUE = "cur_set_value"
    CUR_STEP = "cur_step"
    CUR_STEP_BACK = "cur_step_back"

    # Server
    ECHO = "echo"
    PLAY_SCRIPT = "play_script"
    REPORT = "report"
    STATUS = "status"
    SYNCHRONIZE = "synchronize"
    TUNE_REPLICATION = "tune_replication"
    VACUUM = "vacuum"

    ALL = frozenset(
        {
            ADD, APPEND, CAS, CHECK, CLEAR, GET, INCREMENT, INCREMENT_DOUBLE,
            REMOVE, REPLACE, SEIZE, SET,
            GET_BULK, REMOVE_BULK, SET_BULK,
            MATCH_PREFIX, MATCH_REGEX,
            CUR_DELETE, CUR_GET, CUR_GET_KEY, CUR_GET_VALUE, CUR_JUMP,
            CUR_JUMP_BACK, CUR_REMOVE, CUR_SET_VALUE, CUR_STEP, CUR_STEP_BACK,
            ECHO, PLAY_SCRIPT, REPORT, STATUS, SYNCHRONIZE, TUNE_REPLICATION, VACUUM,
        }
    )  # fmt: skip


def validate_params(params: Mapping[str, str]) -> None:
    """
    Check that a parameter map only holds strings.

    Raises:
        TypeError: If a key or a value is not a string
    """
    for key, value in params.items():
        if not isinstance(key, str):
            raise TypeError(f"Parameter names must be strings, got {type(key).__name__}")
        if not isinstance(value, str):
            raise TypeError(f"Parameter '{key}' must be a string, got {type(value).__name__}")


def build_params(**fields: str | None) -> dict[str, str]:
    """
    Build a parameter map, omitting fields whose value is None.

    The wire format has no null, so absent optional fields are left out
    entirely. Empty strings are kept.
    """
    params = {name: value for name, value in fields.items() if value is not None}
    validate_params(params)
    return params


@dataclass
class RPCRequest:
    """
    RPC Request message format.

    Attributes:
        method: RPC command name (get, set, cur_jump, etc.)
        params: Parameter map, or None to send an empty body
    """

    method: str
    params: dict[str, str] | None = None

    def __post_init__(self) -> None:
        if self.method not in RPCMethod.ALL:
            raise ValueError(f"Unknown RPC command '{self.method}'")
        if self.params is not None:
            validate_params(self.params)

    @property
    def path(self) -> str:
        """Request target relative to the server root."""
        return f"/rpc/{self.method}"

    def to_body(self, encoding: WireEncoding) -> bytes:
        """Encode the parameters with the given wire encoding."""
        if self.params is None:
            return b""
        return codec.encode(encoding, self.params)


@dataclass
class RPCResponse:
    """
    RPC Response message format.

    Attributes:
        status_code: HTTP status of the reply
        result: Decoded parameter map (empty when the body was empty)
    """

    status_code: int
    result: dict[str, str] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        """Check if response is successful."""
        return self.status_code == 200

    @property
    def is_error(self) -> bool:
        """Check if response is an error."""
        return not self.is_success

    @property
    def error(self) -> str:
        """Server supplied error message, if any."""
        return self.result.get("ERROR", "")

    @classmethod
    def from_http(cls, status_code: int, content_type: str | None, content: bytes) -> "RPCResponse":
        """
        Decode an HTTP reply.

        The decoder is selected from the response content type, which must
        be one of the tab-separated forms when a body is present.

        Raises:
            ProtocolError: If the body cannot be decoded
        """
        if not content:
            return cls(status_code=status_code)
        encoding = WireEncoding.from_content_type(content_type)
        if encoding not in codec.RESPONSE_ENCODINGS:
            raise ProtocolError(f"Unexpected response content type '{content_type}'", code=status_code)
        return cls(status_code=status_code, result=codec.decode_as(encoding, content))

    def raise_for_status(self, uri: str | None = None) -> None:
        """
        Map a non-success status to the SDK exception taxonomy.

        Raises:
            InconsistencyError: 450, a record precondition was not met
            ImplementationError: 501, not supported by the storage type
            ProtocolError: 400 or any status without a meaning in the protocol
        """
        if self.is_success:
            return
        where = f" on server {uri}" if uri else ""
        if self.status_code == 450:
            raise InconsistencyError(
                f"(Un)existing record was detected{where}. {self.error}".rstrip(),
                detail=self.error,
                uri=uri,
            )
        if self.status_code == 501:
            raise ImplementationError(
                f"Unimplemented procedure on the selected database storage type{where}.",
                code=501,
                uri=uri,
            )
        if self.status_code == 400:
            raise ProtocolError(
                f"Bad protocol communication{where}. {self.error}".rstrip(),
                code=400,
                uri=uri,
            )
        raise ProtocolError(
            f"Unexpected HTTP status {self.status_code}{where}. {self.error}".rstrip(),
            code=self.status_code,
            uri=uri,
        )
