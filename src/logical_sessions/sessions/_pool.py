"""
Coroutine-safe pool of idle server sessions.

The SessionPool is the single shared, mutable resource of a client's session subsystem. It owns a
LIFO collection of idle ServerSession objects and exposes exactly four operations: `acquire`,
`release`, `discard`, and `drain`. The idle collection itself is never handed out.

Ordering:
    The most recently released sessions sit on the left of the deque and the least recently used
    on the right. Acquire takes from the left so fresh sessions are preferred; stale sessions
    collect on the right and age out.

Expiry:
    An idle session older than ``session_timeout_minutes - 1`` minutes is dropped instead of being
    reused. When the server advertises a new timeout, idle sessions are re-checked against it
    lazily on the next acquire or release. Nothing is purged proactively.

Async Safety:
    All operations run under one instance-level asyncio.Lock. The lock is never held across an
    await, so acquire never waits for a resource; when no idle session qualifies it allocates a
    new one.
"""

import asyncio
import collections
import logging

from logical_sessions._exceptions import InternalError

from ._server_session import ServerSession

_LOGGER = logging.getLogger(__name__)


class SessionPool:
    """
    Coroutine-safe LIFO store of idle server sessions.

    Invariant:
        A server session present in the idle store is not held by any ClientSession, and a server
        session held by a ClientSession is absent from the idle store.

    Usage Example:
        pool = SessionPool(session_timeout_minutes=30)
        server_session = await pool.acquire()
        ...
        if server_session.dirty:
            await pool.discard(server_session)
        else:
            await pool.release(server_session)
        ids = [s.session_id for s in await pool.drain()]
    """

    def __init__(self, session_timeout_minutes: int | None = None):
        """
        Create an empty pool.

        Args:
            session_timeout_minutes (int | None): The server's logical session timeout, if known.
        """
        self._idle: collections.deque[ServerSession] = collections.deque()
        self._lock = asyncio.Lock()
        self._session_timeout_minutes = session_timeout_minutes
        self._created_count = 0
        self._discarded_count = 0

    @property
    def session_timeout_minutes(self) -> int | None:
        """The logical session timeout used for expiry checks."""
        return self._session_timeout_minutes

    @session_timeout_minutes.setter
    def session_timeout_minutes(self, value: int | None) -> None:
        if value != self._session_timeout_minutes:
            _LOGGER.info(
                f"[SessionPool] Logical session timeout changed from {self._session_timeout_minutes} to {value} minutes"
            )
        self._session_timeout_minutes = value

    @property
    def created_count(self) -> int:
        """Number of server sessions this pool has allocated."""
        return self._created_count

    @property
    def discarded_count(self) -> int:
        """Number of server sessions dropped as dirty."""
        return self._discarded_count

    def __len__(self) -> int:
        return len(self._idle)

    async def acquire(self) -> ServerSession:
        """
        Take the most recently released non-expired session, or allocate a new one.

        Returns:
            ServerSession: A server session now exclusively owned by the caller.

        Raises:
            FatalAllocationError: If a new session identifier cannot be generated.
        """
        async with self._lock:
            self._clear_stale()

            while self._idle:
                server_session = self._idle.popleft()
                if not server_session.timed_out(self._session_timeout_minutes):
                    _LOGGER.debug(f"[SessionPool] Reusing {server_session!r}")
                    return server_session

            server_session = ServerSession()
            self._created_count += 1
            _LOGGER.debug(f"[SessionPool] Allocated {server_session!r}")
            return server_session

    async def release(self, server_session: ServerSession) -> None:
        """
        Return a session to the front of the idle store.

        Dirty sessions must be routed to `discard` by the caller; one that reaches this method is
        dropped anyway.

        Args:
            server_session (ServerSession): A session previously returned by `acquire`.

        Raises:
            InternalError: If the session is already idle in this pool (double release).
        """
        async with self._lock:
            if any(s is server_session for s in self._idle):
                raise InternalError(
                    f"[SessionPool] {server_session!r} released twice; it is already idle"
                )
            if server_session.dirty:
                _LOGGER.warning(
                    f"[SessionPool] Refusing to pool dirty {server_session!r}; dropping it"
                )
                self._discarded_count += 1
                return

            self._clear_stale()
            self._idle.appendleft(server_session)

    async def discard(self, server_session: ServerSession) -> None:
        """
        Drop a session permanently. Used for dirty sessions.

        Args:
            server_session (ServerSession): The session to drop.
        """
        async with self._lock:
            self._discarded_count += 1
        _LOGGER.debug(f"[SessionPool] Discarded {server_session!r}")

    async def drain(self) -> list[ServerSession]:
        """
        Atomically empty the idle store.

        Returns:
            list[ServerSession]: Every idle session, most recently released first.
        """
        async with self._lock:
            drained = list(self._idle)
            self._idle.clear()
        _LOGGER.debug(f"[SessionPool] Drained {len(drained)} idle sessions")
        return drained

    def _clear_stale(self) -> None:
        # Least recently used sessions are on the right; stop at the first live one.
        while self._idle:
            server_session = self._idle.pop()
            if not server_session.timed_out(self._session_timeout_minutes):
                self._idle.append(server_session)
                break
            _LOGGER.debug(f"[SessionPool] Dropped expired {server_session!r}")
