"""
Lazy record iteration.

A ``RecordIterator`` walks records (or keys) of a database with one of
two strategies, chosen from its ``RecordScan`` configuration:

- match list: a ``match_prefix``/``match_regex`` query run once per rewind,
  whose keys are then walked locally. Values are read with a fresh ``get``
  when each record is produced.
- cursor: a server cursor jumped to the start key and stepped forward or
  backward. The cursor identifier comes from the connection's
  ``CursorRegistry`` and is released when the iterator is closed.

Usage:
    with kt.forward() as records:
        for key, value in records:
            print(key, value)

    for key in kt.scan_prefix("user:", keys_only=True, backward=True):
        print(key)
"""

import dataclasses
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Self

from .exceptions import InconsistencyError

if TYPE_CHECKING:
    from .connection.base import BaseKyotoConnection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordScan:
    """
    Immutable configuration of a record iteration.

    Attributes:
        prefix: Key prefix for a match-list scan
        regex: Regular expression for a match-list scan
        max: Maximum number of keys a match-list scan retrieves (0 for no limit)
        backward: Walk in reverse order
        keys_only: Produce keys instead of (key, value) pairs
        start_key: First key of a cursor scan (None for the start of the key space)
    """

    prefix: str | None = None
    regex: str | None = None
    max: int = 0
    backward: bool = False
    keys_only: bool = False
    start_key: str | None = None

    def __post_init__(self) -> None:
        if self.prefix is not None and self.regex is not None:
            raise ValueError("A scan takes either a prefix or a regex, not both")
        if isinstance(self.max, bool) or not isinstance(self.max, int) or self.max < 0:
            raise ValueError(f"max must be a non-negative integer, got {self.max!r}")
        if self.start_key is not None and self.is_match_list:
            raise ValueError("start_key only applies to cursor scans")

    @property
    def is_match_list(self) -> bool:
        """True for prefix/regex scans, False for cursor scans."""
        return self.prefix is not None or self.regex is not None

    def with_options(self, **changes: Any) -> "RecordScan":
        """Return a new configuration with some options replaced."""
        return dataclasses.replace(self, **changes)


class RecordIterator:
    """
    Restartable lazy sequence of records backed by a match list or a server cursor.

    Iterating (``for ... in``) rewinds first, so each loop reflects the
    server state at the time it starts. ``rewind``/``valid``/``current``/
    ``advance`` give step-by-step control.

    Iteration stops without error when a record vanishes between two steps
    (the server answers with an inconsistency).
    """

    def __init__(self, connection: "BaseKyotoConnection", scan: RecordScan):
        self.connection = connection
        self.scan = scan
        self.count: int | None = None
        self._cursor_id: int | None = None
        self._keys: list[str] = []
        self._index = 0
        self._exhausted = True
        self._current: Any = None
        self._closed = False

    @property
    def cursor_id(self) -> int | None:
        """Server cursor identifier, once allocated."""
        return self._cursor_id

    @property
    def is_closed(self) -> bool:
        return self._closed

    def fork(self, **changes: Any) -> "RecordIterator":
        """Return an independent iterator on the same connection, optionally reconfigured."""
        return RecordIterator(self.connection, self.scan.with_options(**changes))

    # Stepping

    def rewind(self) -> None:
        """Restart from the beginning, re-running the query or re-jumping the cursor."""
        if self._closed:
            raise RuntimeError("Cannot rewind a closed iterator")

        self._current = None
        self._exhausted = False
        if self.scan.is_match_list:
            self._rewind_match()
        else:
            self._rewind_cursor()

    def _rewind_match(self) -> None:
        if self.scan.prefix is not None:
            result = self.connection.match_prefix(self.scan.prefix, self.scan.max)
        else:
            assert self.scan.regex is not None
            result = self.connection.match_regex(self.scan.regex, self.scan.max)

        self.count = result.count
        self._keys = list(reversed(result.keys)) if self.scan.backward else list(result.keys)
        self._index = 0

    def _rewind_cursor(self) -> None:
        if self._cursor_id is None:
            self._cursor_id = self.connection.cursors.allocate()

        try:
            if self.scan.backward:
                self.connection.cur_jump_back(self._cursor_id, self.scan.start_key)
            else:
                self.connection.cur_jump(self._cursor_id, self.scan.start_key)
        except InconsistencyError as e:
            logger.debug(f"Cursor {self._cursor_id} could not jump: {e.detail}")
            self._exhausted = True

    def valid(self) -> bool:
        """
        Read the current element. Returns False once the sequence has ended.

        For match-list scans the value is fetched now, not at match time.
        """
        if self._closed or self._exhausted:
            return False

        if self.scan.is_match_list:
            return self._read_match()
        return self._read_cursor()

    def _read_match(self) -> bool:
        if self._index >= len(self._keys):
            self._exhausted = True
            return False

        key = self._keys[self._index]
        if self.scan.keys_only:
            self._current = key
            return True
        try:
            self._current = (key, self.connection.get(key))
        except InconsistencyError:
            logger.debug(f"Record {key!r} vanished after matching; ending iteration")
            self._exhausted = True
            return False
        return True

    def _read_cursor(self) -> bool:
        assert self._cursor_id is not None
        try:
            if self.scan.keys_only:
                self._current = self.connection.cur_get_key(self._cursor_id)
            else:
                self._current = self.connection.cur_get(self._cursor_id)
        except InconsistencyError:
            self._exhausted = True
            return False
        return True

    def current(self) -> Any:
        """Element read by the last successful ``valid()``: a key, or a (key, value) pair."""
        return self._current

    def advance(self) -> None:
        """Move to the next element."""
        if self._closed or self._exhausted:
            return

        self._current = None
        if self.scan.is_match_list:
            self._index += 1
            return

        assert self._cursor_id is not None
        try:
            if self.scan.backward:
                self.connection.cur_step_back(self._cursor_id)
            else:
                self.connection.cur_step(self._cursor_id)
        except InconsistencyError:
            self._exhausted = True

    def __iter__(self) -> Iterator[Any]:
        self.rewind()
        while self.valid():
            yield self._current
            self.advance()

    # Disposal

    def close(self) -> None:
        """Release the cursor identifier. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._exhausted = True
        self._keys = []
        if self._cursor_id is not None:
            self.connection.cursors.release(self._cursor_id)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __del__(self) -> None:
        # __init__ may have failed before the attributes existed
        if getattr(self, "_closed", True):
            return
        self.close()

    def __repr__(self) -> str:
        strategy = "match" if self.scan.is_match_list else f"cursor={self._cursor_id}"
        return f"RecordIterator({strategy}, scan={self.scan!r})"


__all__ = ["RecordScan", "RecordIterator"]
