"""
Base Connection Interface for Kyoto Tycoon SDK.

Defines the RPC invocation contract shared by every connection type and
the high-level command API built on top of it. Subclasses only provide
the transport (`_execute`).
"""

import dataclasses
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Self, TypeVar
from urllib.parse import quote

from pydantic import BaseModel

from ..cursor import CursorRegistry
from ..exceptions import ImplementationError, InconsistencyError, MissingFieldError, ProtocolError
from ..protocol.codec import WireEncoding
from ..protocol.rpc import RPCMethod, RPCRequest, RPCResponse, build_params
from ..types import DEFAULT_URI, Endpoint, MatchResult, Record, RecordInfo, RestResponse, prefix_keys, unprefix

if TYPE_CHECKING:
    from ..iterator import RecordIterator

logger = logging.getLogger(__name__)

T = TypeVar("T")

REST_METHODS = ("GET", "HEAD", "PUT", "DELETE")


@dataclass
class TransportResponse:
    """Raw outcome of one HTTP exchange."""

    status_code: int
    content_type: str | None = None
    content: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)


def _expiration(xt: int | float | None) -> str | None:
    """
    Format an expiration time for the wire.

    None and 0 request no expiration. A positive number is relative to now
    in seconds; a negative one is an absolute epoch time. Fractions of a
    second are truncated, so anything under one second also means none.
    """
    if xt is None:
        return None
    if isinstance(xt, bool) or not isinstance(xt, (int, float)):
        raise TypeError(f"Expiration time must be a number, got {type(xt).__name__}")
    seconds = int(xt)
    if seconds == 0:
        return None
    return str(seconds)


def _flag(enabled: bool) -> str | None:
    """Flags are sent as present-but-empty fields."""
    return "" if enabled else None


class BaseKyotoConnection(ABC):
    """
    Abstract base class for Kyoto Tycoon connections.

    All connection implementations must inherit from this class.
    """

    def __init__(
        self,
        uri: str = DEFAULT_URI,
        encoding: WireEncoding | str = WireEncoding.FORM_URL,
        cursors: CursorRegistry | None = None,
    ):
        """
        Initialize connection parameters.

        Args:
            uri: Server URI; its path selects the database (e.g. "http://kt.local:1979/user.kch")
            encoding: Wire encoding of request bodies
            cursors: Registry of cursor identifiers; a private one is created if omitted
        """
        self.endpoint = Endpoint.parse(uri)
        self.encoding = encoding
        self.cursors = cursors if cursors is not None else CursorRegistry()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if connection is established."""
        return self._connected

    @property
    def uri(self) -> str:
        """``host:port`` of the server, as used in error messages."""
        return str(self.endpoint)

    @property
    def database(self) -> str | None:
        """Database selector sent as ``DB``, or None."""
        return self.endpoint.database

    @property
    def encoding(self) -> WireEncoding:
        """Active wire encoding for request bodies."""
        return self._encoding

    @encoding.setter
    def encoding(self, value: WireEncoding | str) -> None:
        try:
            encoding = WireEncoding(value)
        except ValueError:
            valid = ", ".join(e.value for e in WireEncoding)
            raise ValueError(f"Invalid encoding '{value}'. Must be one of: {valid}.") from None
        self._encoding = encoding
        logger.debug(f"Using {encoding.value} encoding ({encoding.content_type})")

    @property
    def headers(self) -> dict[str, str]:
        """Headers of an RPC request with the active encoding."""
        return {"Content-Type": self.encoding.content_type}

    def connect_to(self, uri: str) -> Self:
        """Point later calls at another server or database."""
        self.endpoint = Endpoint.parse(uri)
        return self

    # Abstract methods that must be implemented

    @abstractmethod
    def connect(self) -> Self:
        """Establish the connection. Returns self for fluent API."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""
        ...

    @abstractmethod
    def _execute(
        self,
        method: str,
        path: str,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        """
        Perform one request/response exchange.

        Args:
            method: HTTP method
            path: Request target relative to the server root
            content: Request body
            headers: Request headers

        Returns:
            The status, content type, body and headers of the reply

        Raises:
            ConnectionError: If the exchange could not be completed
        """
        ...

    # Context manager support

    def __enter__(self) -> Self:
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()

    # RPC invocation

    def rpc(
        self,
        method: str,
        params: dict[str, str] | None = None,
        projection: Callable[[dict[str, str]], T] | None = None,
    ) -> Any:
        """
        Execute an RPC call.

        Args:
            method: RPC command name
            params: Parameter map to send (None sends an empty body)
            projection: Called with the decoded result on success; its
                return value becomes the result of the call

        Returns:
            None without a projection, otherwise the projected value

        Raises:
            ValueError: If the command is unknown
            ConnectionError: If the server cannot be reached
            InconsistencyError: 450, a record precondition was not met
            ImplementationError: 501, not supported by the storage type
            ProtocolError: 400, an unexpected status or an undecodable reply
        """
        request = RPCRequest(method=method, params=params)
        reply = self._execute("POST", request.path, request.to_body(self.encoding), self.headers)

        try:
            response = RPCResponse.from_http(reply.status_code, reply.content_type, reply.content)
        except ProtocolError as e:
            e.uri = self.uri
            logger.debug(f"RPC {method} -> {reply.status_code}: {e.message}")
            raise

        logger.debug(f"RPC {method} -> {response.status_code}")
        if response.is_error:
            response.raise_for_status(self.uri)

        if projection is None:
            return None
        try:
            return projection(response.result)
        except KeyError as e:
            field = str(e.args[0]) if e.args else "?"
            raise MissingFieldError(field, uri=self.uri) from e
        except ValueError as e:
            raise ProtocolError(f"Malformed {method} result: {e}", code=response.status_code, uri=self.uri) from e

    def _db_params(self, **fields: str | None) -> dict[str, str]:
        """Parameters of a command addressing the selected database."""
        return build_params(DB=self.database, **fields)

    # Record commands

    def add(self, key: str, value: str, xt: int | float | None = None) -> None:
        """
        Add a record.

        Raises:
            InconsistencyError: If the record already exists
        """
        self.rpc(RPCMethod.ADD, self._db_params(key=key, value=value, xt=_expiration(xt)))

    def append(self, key: str, value: str, xt: int | float | None = None) -> None:
        """Append the value to a record, creating it if needed."""
        self.rpc(RPCMethod.APPEND, self._db_params(key=key, value=value, xt=_expiration(xt)))

    def replace(self, key: str, value: str, xt: int | float | None = None) -> None:
        """
        Replace the value of a record.

        Raises:
            InconsistencyError: If the record does not exist
        """
        self.rpc(RPCMethod.REPLACE, self._db_params(key=key, value=value, xt=_expiration(xt)))

    def set(self, key: str, value: str, xt: int | float | None = None) -> None:
        """
        Set the value of a record.

        Args:
            key: The key of the record
            value: The value of the record
            xt: Expiration time from now in seconds; negative for an absolute
                epoch time; None or 0 for no expiration
        """
        self.rpc(RPCMethod.SET, self._db_params(key=key, value=value, xt=_expiration(xt)))

    def cas(self, key: str, oval: str | None, nval: str | None, xt: int | float | None = None) -> None:
        """
        Perform compare-and-swap.

        Args:
            key: The key of the record
            oval: The expected old value; None means no record is expected
            nval: The new value; None removes the record
            xt: Expiration time, as for ``set``

        Raises:
            InconsistencyError: If the old value assumption failed
        """
        self.rpc(RPCMethod.CAS, self._db_params(key=key, oval=oval, nval=nval, xt=_expiration(xt)))

    def remove(self, key: str) -> None:
        """
        Remove a record.

        Raises:
            InconsistencyError: If the record does not exist
        """
        self.rpc(RPCMethod.REMOVE, self._db_params(key=key))

    def seize(self, key: str) -> str:
        """Retrieve the value of a record and remove it atomically."""
        return self.rpc(RPCMethod.SEIZE, self._db_params(key=key), lambda result: result["value"])

    def clear(self) -> None:
        """Remove all records of the database."""
        self.rpc(RPCMethod.CLEAR, self._db_params())

    def get(self, key: str) -> str:
        """
        Retrieve the value of a record.

        Raises:
            InconsistencyError: If the record does not exist
        """
        return self.get_record(key).value

    def get_record(self, key: str) -> Record:
        """Retrieve a record with its absolute expiration time."""
        return self.rpc(
            RPCMethod.GET,
            self._db_params(key=key),
            lambda result: Record.from_rpc_result(key, result),
        )

    def get_expiration(self, key: str) -> int | None:
        """Retrieve the absolute expiration time of a record (None if it never expires)."""
        return self.get_record(key).xt

    def check(self, key: str) -> RecordInfo:
        """Retrieve the value size and the expiration time of a record."""
        return self.rpc(RPCMethod.CHECK, self._db_params(key=key), RecordInfo.from_rpc_result)

    def increment(self, key: str, num: int = 1, xt: int | float | None = None) -> int:
        """
        Add a number to the integer value of a record.

        Returns:
            The value after the addition

        Raises:
            InconsistencyError: If the existing value is not compatible
        """
        if isinstance(num, bool) or not isinstance(num, int):
            raise TypeError(f"num must be an integer, got {type(num).__name__}")
        return self.rpc(
            RPCMethod.INCREMENT,
            self._db_params(key=key, num=str(num), xt=_expiration(xt)),
            lambda result: int(result["num"]),
        )

    def increment_double(self, key: str, num: float = 1.0, xt: int | float | None = None) -> float:
        """Add a number to the floating point value of a record."""
        if isinstance(num, bool) or not isinstance(num, (int, float)):
            raise TypeError(f"num must be a number, got {type(num).__name__}")
        return self.rpc(
            RPCMethod.INCREMENT_DOUBLE,
            self._db_params(key=key, num=repr(float(num)), xt=_expiration(xt)),
            lambda result: float(result["num"]),
        )

    def inc(self, key: str, num: int | float = 1, xt: int | float | None = None) -> int | float:
        """Increment with ``increment`` for integers and ``increment_double`` otherwise."""
        if isinstance(num, int) and not isinstance(num, bool):
            return self.increment(key, num, xt)
        return self.increment_double(key, num, xt)

    # Bulk commands

    def get_bulk(self, keys: Iterable[str], atomic: bool = False) -> dict[str, str]:
        """Retrieve the values of several records; missing records are left out."""
        params = self._db_params(atomic=_flag(atomic), **prefix_keys({key: "" for key in keys}))
        return self.rpc(RPCMethod.GET_BULK, params, unprefix)

    def set_bulk(
        self,
        records: Mapping[str, str],
        xt: int | float | None = None,
        atomic: bool = False,
    ) -> int:
        """Store several records. Returns the number of stored records."""
        params = self._db_params(xt=_expiration(xt), atomic=_flag(atomic), **prefix_keys(dict(records)))
        return self.rpc(RPCMethod.SET_BULK, params, lambda result: int(result["num"]))

    def remove_bulk(self, keys: Iterable[str], atomic: bool = False) -> int:
        """Remove several records. Returns the number of removed records."""
        params = self._db_params(atomic=_flag(atomic), **prefix_keys({key: "" for key in keys}))
        return self.rpc(RPCMethod.REMOVE_BULK, params, lambda result: int(result["num"]))

    # Matching

    def match_prefix(self, prefix: str, max: int | None = None) -> MatchResult:
        """
        Get keys beginning with a prefix.

        Args:
            prefix: The prefix string
            max: Maximum number of keys to retrieve; None or <= 0 for no limit

        Returns:
            MatchResult with the keys and their count
        """
        params = self._db_params(prefix=prefix, max=str(max) if max is not None and max > 0 else None)
        return self.rpc(RPCMethod.MATCH_PREFIX, params, MatchResult.from_rpc_result)

    def match_regex(self, regex: str, max: int | None = None) -> MatchResult:
        """Get keys matching a regular expression, as ``match_prefix``."""
        params = self._db_params(regex=regex, max=str(max) if max is not None and max > 0 else None)
        return self.rpc(RPCMethod.MATCH_REGEX, params, MatchResult.from_rpc_result)

    # Cursor commands

    def cur_jump(self, cur: int, key: str | None = None) -> None:
        """
        Jump the cursor to a record for forward scan.

        Args:
            cur: The cursor identifier
            key: Key of the destination record; None for the first record

        Raises:
            InconsistencyError: If the cursor could not be positioned
        """
        self.rpc(RPCMethod.CUR_JUMP, self._db_params(CUR=str(cur), key=key))

    def cur_jump_back(self, cur: int, key: str | None = None) -> None:
        """Jump the cursor to a record for backward scan; None for the last record."""
        self.rpc(RPCMethod.CUR_JUMP_BACK, self._db_params(CUR=str(cur), key=key))

    def cur_step(self, cur: int) -> None:
        """Move the cursor to the next record."""
        self.rpc(RPCMethod.CUR_STEP, build_params(CUR=str(cur)))

    def cur_step_back(self, cur: int) -> None:
        """Move the cursor to the previous record."""
        self.rpc(RPCMethod.CUR_STEP_BACK, build_params(CUR=str(cur)))

    def cur_get(self, cur: int, step: bool = False) -> tuple[str, str]:
        """
        Get the key and the value of the current record.

        Args:
            cur: The cursor identifier
            step: Move the cursor to the next record afterwards

        Raises:
            InconsistencyError: If the cursor is invalidated
        """
        return self.rpc(
            RPCMethod.CUR_GET,
            build_params(CUR=str(cur), step=_flag(step)),
            lambda result: (result["key"], result["value"]),
        )

    def cur_get_key(self, cur: int, step: bool = False) -> str:
        """Get the key of the current record."""
        return self.rpc(
            RPCMethod.CUR_GET_KEY,
            build_params(CUR=str(cur), step=_flag(step)),
            lambda result: result["key"],
        )

    def cur_get_value(self, cur: int, step: bool = False) -> str:
        """Get the value of the current record."""
        return self.rpc(
            RPCMethod.CUR_GET_VALUE,
            build_params(CUR=str(cur), step=_flag(step)),
            lambda result: result["value"],
        )

    def cur_set_value(self, cur: int, value: str, step: bool = False, xt: int | float | None = None) -> None:
        """Set the value of the current record."""
        self.rpc(
            RPCMethod.CUR_SET_VALUE,
            build_params(CUR=str(cur), value=value, step=_flag(step), xt=_expiration(xt)),
        )

    def cur_remove(self, cur: int) -> None:
        """Remove the current record."""
        self.rpc(RPCMethod.CUR_REMOVE, build_params(CUR=str(cur)))

    def cur_delete(self, cur: int) -> None:
        """Delete the cursor on the server."""
        self.rpc(RPCMethod.CUR_DELETE, build_params(CUR=str(cur)))

    # Server commands

    def echo(self, params: Mapping[str, str] | None = None) -> dict[str, str]:
        """Echo back the input parameters."""
        return self.rpc(RPCMethod.ECHO, build_params(**dict(params or {})), dict)

    def report(self) -> dict[str, str]:
        """Get the report of the server information."""
        return self.rpc(RPCMethod.REPORT, None, dict)

    def status(self) -> dict[str, str]:
        """Get the miscellaneous status information of the database."""
        return self.rpc(RPCMethod.STATUS, self._db_params(), dict)

    def synchronize(self, hard: bool = False, command: str | None = None) -> None:
        """Synchronize updated contents with the file and the device."""
        self.rpc(RPCMethod.SYNCHRONIZE, self._db_params(hard=_flag(hard), command=command))

    def vacuum(self, step: int | None = None) -> None:
        """Scan the database and eliminate regions of expired records."""
        self.rpc(RPCMethod.VACUUM, self._db_params(step=str(step) if step is not None else None))

    # Scripts

    def play_script(
        self,
        name: str,
        data: Mapping[str, str] | None = None,
        return_type: type | None = None,
    ) -> Any:
        """
        Call a procedure of the server side scripting extension.

        Input fields are sent with a ``_`` prefix and output fields carrying
        that prefix are returned without it.

        Args:
            name: Name of the procedure
            data: Input parameters
            return_type: Optional Pydantic model or dataclass to convert the output to

        Usage:
            @dataclass
            class Counter:
                name: str
                value: str

            counter: Counter = kt.play_script("incr", {"name": "hits"}, return_type=Counter)
        """
        params = build_params(name=name, **prefix_keys(dict(data or {})))
        result = self.rpc(RPCMethod.PLAY_SCRIPT, params, unprefix)
        if return_type is not None:
            return self._convert_to_type(result, return_type)
        return result

    def _convert_to_type(self, value: Any, target_type: type) -> Any:
        """Convert a value to the target type."""
        if isinstance(target_type, type) and issubclass(target_type, BaseModel):
            return target_type.model_validate(value)

        if dataclasses.is_dataclass(target_type) and isinstance(target_type, type):
            if isinstance(value, dict):
                return target_type(**value)

        # For simple types, try direct conversion
        if isinstance(target_type, type):
            try:
                return target_type(value)
            except (TypeError, ValueError):
                pass

        return value

    # Direct record access (REST-style, without the RPC envelope)

    def rest(
        self,
        method: str,
        key: str,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> RestResponse:
        """
        Access a record directly at ``/<key>``.

        Args:
            method: GET, HEAD, PUT or DELETE
            key: The key of the record
            content: Body of a PUT
            headers: Extra request headers

        Returns:
            RestResponse with the body and the ``X-Kt-Xt``/``Date`` headers

        Raises:
            InconsistencyError: 404, no record was found
            ImplementationError: 501
            ProtocolError: 400 or an unexpected status
        """
        method = method.upper()
        if method not in REST_METHODS:
            raise ValueError(f"Invalid REST method '{method}'. Must be one of: {', '.join(REST_METHODS)}.")
        if not isinstance(key, str):
            raise TypeError(f"key must be a string, got {type(key).__name__}")

        reply = self._execute(method, "/" + quote(key, safe=""), content, headers)
        logger.debug(f"REST {method} {key!r} -> {reply.status_code}")

        if reply.status_code in (200, 201, 204):
            return RestResponse.from_headers(reply.content, reply.headers)
        if reply.status_code == 404:
            raise InconsistencyError(
                f"(Un)existing record was detected on server {self.uri}. No record was found",
                detail="No record was found",
                code=404,
                uri=self.uri,
            )
        if reply.status_code == 501:
            raise ImplementationError(
                f"Unimplemented procedure on the selected database storage type on server {self.uri}.",
                code=501,
                uri=self.uri,
            )
        raise ProtocolError(
            f"Bad protocol communication with server {self.uri} (HTTP {reply.status_code}).",
            code=reply.status_code,
            uri=self.uri,
        )

    def rest_get(self, key: str) -> RestResponse:
        """Retrieve a record with its expiration time and the server date."""
        return self.rest("GET", key)

    def rest_head(self, key: str) -> RestResponse:
        """Retrieve the headers of a record without its value."""
        return self.rest("HEAD", key)

    def rest_put(self, key: str, value: str | bytes, xt: int | float | None = None) -> RestResponse:
        """Store a record directly; ``xt`` is sent as the ``X-Kt-Xt`` header."""
        content = value.encode("utf-8") if isinstance(value, str) else value
        expiration = _expiration(xt)
        headers = {"X-Kt-Xt": expiration} if expiration is not None else None
        return self.rest("PUT", key, content, headers)

    def rest_delete(self, key: str) -> RestResponse:
        """Remove a record directly."""
        return self.rest("DELETE", key)

    # Iteration

    def _scan(self, **options: Any) -> "RecordIterator":
        from ..iterator import RecordIterator, RecordScan

        return RecordIterator(self, RecordScan(**options))

    def scan_prefix(
        self,
        prefix: str,
        max: int = 0,
        backward: bool = False,
        keys_only: bool = False,
    ) -> "RecordIterator":
        """
        Iterate over the records whose key begins with a prefix.

        Usage:
            with kt.scan_prefix("user:") as records:
                for key, value in records:
                    ...
        """
        return self._scan(prefix=prefix, max=max, backward=backward, keys_only=keys_only)

    def scan_regex(
        self,
        regex: str,
        max: int = 0,
        backward: bool = False,
        keys_only: bool = False,
    ) -> "RecordIterator":
        """Iterate over the records whose key matches a regular expression."""
        return self._scan(regex=regex, max=max, backward=backward, keys_only=keys_only)

    def forward(self, start_key: str | None = None, keys_only: bool = False) -> "RecordIterator":
        """Iterate over all records in key order with a server cursor."""
        return self._scan(start_key=start_key, keys_only=keys_only)

    def backward(self, start_key: str | None = None, keys_only: bool = False) -> "RecordIterator":
        """Iterate over all records in reverse key order with a server cursor."""
        return self._scan(start_key=start_key, backward=True, keys_only=keys_only)
