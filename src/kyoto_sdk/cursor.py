"""
Cursor identifier registry.

Kyoto Tycoon cursors are addressed by an integer chosen by the client.
Two iterators sharing one identifier would move each other's cursor, so
every connection owns a registry handing out identifiers that are unique
among the live ones.

The registry is not thread-safe; allocation and release are expected to
happen on a single thread of control.
"""

import logging

logger = logging.getLogger(__name__)


class CursorRegistry:
    """
    Table of cursor identifiers currently in use.

    Usage:
        registry = CursorRegistry()
        cur = registry.allocate()   # 1
        ...
        registry.release(cur)
    """

    def __init__(self) -> None:
        self._live: set[int] = set()

    def allocate(self) -> int:
        """
        Reserve a new cursor identifier.

        Returns one more than the highest live identifier, or 1 when none
        is live, so an identifier still held by an iterator is never reused.
        """
        cursor_id = max(self._live, default=0) + 1
        self._live.add(cursor_id)
        logger.debug(f"Allocated cursor {cursor_id}")
        return cursor_id

    def release(self, cursor_id: int) -> None:
        """Return an identifier to the registry. Releasing twice is harmless."""
        if cursor_id in self._live:
            self._live.discard(cursor_id)
            logger.debug(f"Released cursor {cursor_id}")

    @property
    def live(self) -> tuple[int, ...]:
        """Identifiers currently allocated, in increasing order."""
        return tuple(sorted(self._live))

    def __contains__(self, cursor_id: object) -> bool:
        return cursor_id in self._live

    def __len__(self) -> int:
        return len(self._live)

    def __repr__(self) -> str:
        return f"CursorRegistry(live={list(self.live)})"


__all__ = ["CursorRegistry"]
