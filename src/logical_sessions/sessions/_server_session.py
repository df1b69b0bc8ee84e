"""
Server session entity: one server-assigned logical session identifier plus its usage bookkeeping.
"""

import logging
import time
import uuid
from collections.abc import Mapping
from typing import Any

from bson.binary import UUID_SUBTYPE, Binary
from bson.int64 import Int64

from logical_sessions._exceptions import FatalAllocationError

_LOGGER = logging.getLogger(__name__)


def _generate_session_id() -> dict[str, Any]:
    """
    Generate a new lsid document with a random 128-bit UUID.

    Returns:
        dict[str, Any]: ``{"id": Binary(<16 bytes>, 4)}``

    Raises:
        FatalAllocationError: If no random UUID can be produced.
    """
    try:
        # Always subtype 4, regardless of any client-side UUID representation setting
        return {"id": Binary(uuid.uuid4().bytes, UUID_SUBTYPE)}
    except Exception as e:
        _LOGGER.error(f"[ServerSession] Failed to generate a session identifier: {e}")
        raise FatalAllocationError(f"Failed to generate a session identifier: {e}") from e


class ServerSession:
    """
    A server-tracked logical session identifier with usage bookkeeping.

    Instances are created by the SessionPool when no reusable idle session is available and are
    recycled until they become dirty or expire.

    Attributes:
        last_use (float): ``time.monotonic()`` of the last command that used this session.
        dirty (bool): True once a network fault was observed on a command using this session.
    """

    __slots__ = ("_session_id", "last_use", "_transaction_number", "dirty")

    def __init__(self) -> None:
        """
        Allocate a new server session with a fresh identifier and a zero transaction number.

        Raises:
            FatalAllocationError: If identifier generation fails.
        """
        self._session_id = _generate_session_id()
        self.last_use = time.monotonic()
        self._transaction_number = 0
        self.dirty = False

    @property
    def session_id(self) -> Mapping[str, Any]:
        """The lsid document sent with every command that uses this session."""
        return self._session_id

    @property
    def transaction_number(self) -> Int64:
        """The current transaction number, as the 64-bit integer sent on the wire."""
        return Int64(self._transaction_number)

    def increment_transaction_number(self) -> Int64:
        """Advance the transaction number for a new retryable or transactional operation."""
        self._transaction_number += 1
        return self.transaction_number

    def touch(self) -> None:
        """Record that a command is using this session now."""
        self.last_use = time.monotonic()

    def mark_dirty(self) -> None:
        """
        Mark this session as dirty.

        A server session is marked dirty when a command fails with a network error. Dirty
        sessions are discarded instead of being returned to the pool.
        """
        self.dirty = True

    def timed_out(self, session_timeout_minutes: int | None) -> bool:
        """
        Return True if the server may reclaim this session before it could be used again.

        A session counts as expired once it has been idle for longer than one minute less than
        the server's logical session timeout. An unknown timeout never expires sessions.

        Args:
            session_timeout_minutes (int | None): The server's logical session timeout.
        """
        if session_timeout_minutes is None:
            return False

        idle_seconds = time.monotonic() - self.last_use
        return idle_seconds > (session_timeout_minutes - 1) * 60

    def __repr__(self) -> str:
        return (
            f"ServerSession(id={uuid.UUID(bytes=bytes(self._session_id['id']))}, "
            f"txn={self._transaction_number}, dirty={self.dirty})"
        )
