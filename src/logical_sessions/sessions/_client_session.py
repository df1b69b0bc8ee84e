"""
User-facing session handle and its causal-consistency state.

A ClientSession is bound to exactly one ServerSession for its whole lifetime. It carries the
highest operation time and cluster time observed through it, a dirty flag set on the first network
fault, and whether it was started explicitly by the caller or implicitly by the client for one
operation.

Thread safety:
    A ClientSession is not locked. By contract it is used by one operation at a time; the owning
    client checks the session out for each command and raises SessionInUseError if a second
    command tries to use it concurrently. Ending a session while a command is checked out defers
    returning the server session until that command finishes.
"""

import contextlib
import logging
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, NoReturn

from bson.int64 import Int64
from bson.timestamp import Timestamp

from logical_sessions._exceptions import SessionEndedError, SessionInUseError

from ._cluster_time import ClusterTime, newer_cluster_time, validate_cluster_time
from ._server_session import ServerSession

if TYPE_CHECKING:
    from logical_sessions.client import SessionClient  # pragma: no cover

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionOptions:
    """
    Options for a new ClientSession.

    Attributes:
        causal_consistency (bool | None): If True, reads through the session observe every
            operation previously observed through it. None means "use the client default".
    """

    causal_consistency: bool | None = None

    def __post_init__(self) -> None:
        if self.causal_consistency is not None and not isinstance(
            self.causal_consistency, bool
        ):
            raise TypeError(
                f"causal_consistency must be a bool or None, got {type(self.causal_consistency).__name__}"
            )

    def resolve(self, default_causal_consistency: bool) -> "SessionOptions":
        """Return a copy with every unset option filled from the client defaults."""
        if self.causal_consistency is not None:
            return self
        return replace(self, causal_consistency=default_causal_consistency)


class ClientSession:
    """
    A logical session for ordering sequential operations.

    Do not instantiate directly. Use ``await client.start_session()``, ``client.with_session()``,
    or let ``client.run_command()`` create an implicit session.

    Usage Example:
        ```python
        async with await client.start_session() as session:
            await client.run_command({"insert": "foo", "documents": [doc]}, session=session)
            # This read is constrained to observe the insert above
            await client.run_command({"find": "foo", "filter": {}}, session=session)
        ```
    """

    def __init__(
        self,
        client: "SessionClient",
        server_session: ServerSession,
        options: SessionOptions,
        implicit: bool,
    ):
        self._client = client
        self._server_session: ServerSession | None = server_session
        self._options = options
        self._implicit = implicit
        self._operation_time: Timestamp | None = None
        self._cluster_time: ClusterTime | None = None
        self._dirty = False
        self._in_use = False
        self._ended = False

    @classmethod
    async def start(
        cls,
        client: "SessionClient",
        options: SessionOptions | None = None,
        *,
        implicit: bool = False,
    ) -> "ClientSession":
        """
        Start a new session bound to a server session from the client's pool.

        Args:
            client (SessionClient): The owning client.
            options (SessionOptions | None): Session options. Unset options take the client defaults.
            implicit (bool): True if the client is creating the session for a single operation.

        Returns:
            ClientSession: The started session. It holds its server session until `end()`.

        Raises:
            ClientClosedError: If the client has been closed.
            FatalAllocationError: If a new server session identifier cannot be generated.
        """
        client._check_open()
        resolved = (options or SessionOptions()).resolve(
            client.default_causal_consistency
        )
        server_session = await client.pool.acquire()
        session = cls(client, server_session, resolved, implicit)
        client._register_session(session)
        _LOGGER.debug(
            f"[ClientSession] Started {'implicit' if implicit else 'explicit'} session on {server_session!r}"
        )
        client.publisher.publish_session_created(server_session.session_id, implicit)
        return session

    async def end(self) -> None:
        """
        Finish this session and return its server session to the pool.

        A dirty server session is discarded instead of being pooled. Calling end() more than once
        is a no-op. Using the session for a command afterwards raises SessionEndedError.

        If a command is still running on this session, the server session stays checked out until
        that command finishes, so its identifier cannot be handed to another operation meanwhile.
        """
        if self._ended:
            return
        self._ended = True
        if self._in_use:
            _LOGGER.debug(
                f"[ClientSession] end() called while a command is in flight; deferring return of {self._server_session!r}"
            )
            return
        await self._return_server_session()

    async def _return_server_session(self) -> None:
        server_session = self._server_session
        if server_session is None:
            return
        # Cleared before awaiting so a concurrent return is a no-op
        self._server_session = None
        try:
            if server_session.dirty or self._client._shutdown_started:
                # Once shutdown has drained the pool, late returns are never pooled again
                await self._client.pool.discard(server_session)
            else:
                await self._client.pool.release(server_session)
        finally:
            self._client._deregister_session(self)
            _LOGGER.debug(
                f"[ClientSession] Ended {'implicit' if self._implicit else 'explicit'} session on {server_session!r}"
            )
            self._client.publisher.publish_session_ended(
                server_session.session_id, self._implicit, server_session.dirty
            )

    async def __aenter__(self) -> "ClientSession":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.end()

    def __copy__(self) -> NoReturn:
        raise TypeError("A ClientSession cannot be copied, create a new session instead")

    @property
    def client(self) -> "SessionClient":
        """The client this session was started from."""
        return self._client

    @property
    def options(self) -> SessionOptions:
        """The resolved options this session was started with."""
        return self._options

    @property
    def implicit(self) -> bool:
        """True if the client created this session for a single operation."""
        return self._implicit

    @property
    def is_explicit(self) -> bool:
        """True if the caller started this session directly."""
        return not self._implicit

    @property
    def has_ended(self) -> bool:
        """True once `end()` has been called."""
        return self._ended

    @property
    def server_session(self) -> ServerSession | None:
        """The owned server session, or None once it has been returned to the pool."""
        return self._server_session

    @property
    def session_id(self) -> Mapping[str, Any]:
        """The lsid document of the owned server session."""
        return self._check_ended().session_id

    @property
    def transaction_number(self) -> Int64:
        """The current transaction number of the owned server session."""
        return self._check_ended().transaction_number

    @property
    def is_dirty(self) -> bool:
        """True once a network fault was observed on a command carrying this session."""
        return self._dirty

    @property
    def operation_time(self) -> Timestamp | None:
        """The highest operation time observed through this session."""
        return self._operation_time

    @property
    def cluster_time(self) -> ClusterTime | None:
        """The highest cluster time observed through this session."""
        return self._cluster_time

    def mark_dirty(self) -> None:
        """Mark the session dirty. Irreversible; the server session will be discarded on end()."""
        if not self._dirty:
            _LOGGER.info(
                f"[ClientSession] Marking session dirty after a network fault: {self._server_session!r}"
            )
        self._dirty = True
        if self._server_session is not None:
            self._server_session.mark_dirty()

    def advance_operation_time(self, operation_time: Timestamp) -> None:
        """
        Update the operation time, e.g. from another session, if it is newer.

        Args:
            operation_time (Timestamp): An operation time observed elsewhere.

        Raises:
            TypeError: If ``operation_time`` is not a bson Timestamp.
        """
        if not isinstance(operation_time, Timestamp):
            raise TypeError("operation_time must be an instance of bson.timestamp.Timestamp")
        self._advance_operation_time(operation_time)

    def advance_cluster_time(self, cluster_time: Mapping[str, Any]) -> None:
        """
        Update the cluster time, e.g. from another session, if it is newer.

        The value is also offered to the client's process-wide cluster time tracker.

        Args:
            cluster_time (Mapping[str, Any]): A ``$clusterTime`` document.

        Raises:
            TypeError: If ``cluster_time`` is not a mapping.
            ValueError: If ``cluster_time`` has no bson Timestamp ``clusterTime`` field.
        """
        self._advance_cluster_time(validate_cluster_time(cluster_time))

    def _advance_operation_time(self, operation_time: Timestamp | None) -> None:
        if operation_time is None:
            return
        if self._operation_time is None or operation_time > self._operation_time:
            self._operation_time = operation_time

    def _advance_cluster_time(self, cluster_time: ClusterTime | None) -> None:
        if cluster_time is None:
            return
        self._cluster_time = newer_cluster_time(self._cluster_time, cluster_time)
        self._client.cluster_time_tracker.advance(cluster_time)

    def _check_ended(self) -> ServerSession:
        server_session = self._server_session
        if self._ended or server_session is None:
            raise SessionEndedError()
        return server_session

    @contextlib.asynccontextmanager
    async def _checkout(self) -> AsyncIterator["ClientSession"]:
        """
        Hold the session for one operation; a second concurrent operation is rejected.

        If the session was ended while the operation ran, its server session is returned to the
        pool (or discarded, when dirty) on exit.
        """
        self._check_ended()
        if self._in_use:
            raise SessionInUseError()
        self._in_use = True
        try:
            yield self
        finally:
            self._in_use = False
            if self._ended:
                await self._return_server_session()

    def __repr__(self) -> str:
        return (
            f"ClientSession(server_session={self._server_session!r}, implicit={self._implicit}, "
            f"causal_consistency={self._options.causal_consistency}, dirty={self._dirty})"
        )
