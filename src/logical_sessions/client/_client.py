"""
The owning client of the session subsystem.

SessionClient wires together one SessionPool, one ClusterTimeTracker, one CommandDecorator, one
ShutdownCoordinator, and an EventPublisher on top of a CommandTransport. It is the entry point for
starting explicit sessions, running commands under explicit or implicit sessions, and closing.

Usage Example:
    ```python
    client = SessionClient(transport, {"session_timeout_minutes": 30})

    # Explicit session
    async with await client.start_session() as session:
        await client.run_command({"find": "foo", "filter": {}}, session=session)

    # Scoped session, ended however the operation finishes
    await client.with_session(lambda s: client.run_command({"find": "foo"}, session=s))

    # Implicit session
    await client.run_command({"insert": "foo", "documents": [{}]}, retryable=True)

    await client.close()  # ends active sessions and sends endSessions
    ```

Async Safety:
    Any number of tasks may start sessions and run commands concurrently. A single ClientSession
    must only be used by one command at a time.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, TypeVar

from logical_sessions import config
from logical_sessions._exceptions import ClientClosedError, UsageError
from logical_sessions.monitoring import EventPublisher, SessionEventListener
from logical_sessions.sessions import (
    ClientSession,
    ClusterTime,
    ClusterTimeTracker,
    CommandDecorator,
    ScopedSessionRunner,
    SessionOptions,
    SessionPool,
    ShutdownCoordinator,
)

from ._transport import CommandTransport

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class SessionClient:
    """
    A client instance with its own session pool, cluster time, and shutdown protocol.

    Lifecycle:
        Sessions may be started and commands run until `close()`. Closing ends every active
        session, then drains the pool and sends ``endSessions`` for the idle identifiers. A session
        whose command is still in flight is discarded when that command finishes instead of being
        pooled, so its identifier is never in an ``endSessions`` batch while in use. Closing twice
        is a no-op; any other use after close raises ClientClosedError.
    """

    def __init__(
        self,
        transport: CommandTransport,
        client_config: dict[str, Any] | None = None,
        *,
        listeners: Iterable[SessionEventListener] | None = None,
    ):
        """
        Create a client.

        Args:
            transport (CommandTransport): Sends commands to the server.
            client_config (dict[str, Any] | None): The ``client`` configuration section. Missing
                fields take their defaults.
            listeners (Iterable[SessionEventListener] | None): Session event listeners.

        Raises:
            ClientConfigurationError: If ``client_config`` is invalid.
        """
        self._config = config.apply_client_defaults(client_config)
        self._transport = transport
        self._publisher = EventPublisher(listeners)
        self._pool = SessionPool(self._config["session_timeout_minutes"])
        self._cluster_time_tracker = ClusterTimeTracker()
        self._decorator = CommandDecorator(self._cluster_time_tracker)
        self._shutdown = ShutdownCoordinator(
            self._pool,
            transport,
            batch_size=self._config["end_sessions_batch_size"],
            timeout=self._config["end_sessions_timeout_seconds"],
            publisher=self._publisher,
        )
        self._active_sessions: set[ClientSession] = set()
        self._closed = False
        self._shutdown_started = False
        self._close_lock = asyncio.Lock()
        _LOGGER.info(f"[SessionClient] created with configuration: {self._config}")

    @classmethod
    async def from_config(
        cls,
        transport: CommandTransport,
        config_manager: config.ConfigManager,
        *,
        listeners: Iterable[SessionEventListener] | None = None,
    ) -> "SessionClient":
        """
        Create a client from the ``client`` section of a ConfigManager's configuration.

        Args:
            transport (CommandTransport): Sends commands to the server.
            config_manager (ConfigManager): Source of the configuration.
            listeners (Iterable[SessionEventListener] | None): Session event listeners.

        Returns:
            SessionClient: The new client.
        """
        client_config = await config.get_client_config(config_manager)
        return cls(transport, client_config, listeners=listeners)

    # ===== Collaborator access =====

    @property
    def pool(self) -> SessionPool:
        return self._pool

    @property
    def publisher(self) -> EventPublisher:
        return self._publisher

    @property
    def cluster_time_tracker(self) -> ClusterTimeTracker:
        return self._cluster_time_tracker

    @property
    def cluster_time(self) -> ClusterTime | None:
        """The highest cluster time seen by any operation of this client."""
        return self._cluster_time_tracker.cluster_time

    @property
    def default_causal_consistency(self) -> bool:
        return bool(self._config["causal_consistency"])

    @property
    def session_timeout_minutes(self) -> int | None:
        return self._pool.session_timeout_minutes

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def active_session_count(self) -> int:
        """Number of started sessions that have not ended."""
        return len(self._active_sessions)

    def update_session_timeout(self, session_timeout_minutes: int | None) -> None:
        """
        Record the logical session timeout advertised by the server.

        Idle sessions are re-checked against the new value on the next acquire or release.

        Args:
            session_timeout_minutes (int | None): The advertised timeout, or None if unknown.

        Raises:
            ValueError: If the value is not a positive integer or None.
        """
        if session_timeout_minutes is not None and (
            isinstance(session_timeout_minutes, bool)
            or not isinstance(session_timeout_minutes, int)
            or session_timeout_minutes < 1
        ):
            raise ValueError(
                f"session_timeout_minutes must be a positive integer or None, got {session_timeout_minutes!r}"
            )
        self._pool.session_timeout_minutes = session_timeout_minutes

    # ===== Sessions =====

    async def start_session(self, options: SessionOptions | None = None) -> ClientSession:
        """
        Start an explicit session. The caller must end it (or close the client).

        Args:
            options (SessionOptions | None): Session options.

        Returns:
            ClientSession: The started session.

        Raises:
            ClientClosedError: If the client has been closed.
        """
        return await ClientSession.start(self, options, implicit=False)

    async def with_session(
        self,
        operation: Callable[[ClientSession], Awaitable[T] | T],
        options: SessionOptions | None = None,
    ) -> T:
        """
        Run ``operation`` with a new explicit session and end the session however it finishes.

        Args:
            operation (Callable): Called with the session; may return a value or an awaitable.
            options (SessionOptions | None): Session options.

        Returns:
            T: The operation's result. Exceptions from the operation propagate unchanged.
        """
        runner: ScopedSessionRunner[T] = ScopedSessionRunner(self, operation, options)
        return await runner.run()

    # ===== Commands =====

    async def run_command(
        self,
        command: Mapping[str, Any],
        *,
        session: ClientSession | None = None,
        retryable: bool = False,
    ) -> dict[str, Any]:
        """
        Run one command under a session.

        Without a session, an implicit session is created for this command alone and ended when
        it finishes.

        Args:
            command (Mapping[str, Any]): The command document. It is not modified.
            session (ClientSession | None): An explicit session started from this client.
            retryable (bool): True for retryable or transactional operations (attaches txnNumber).

        Returns:
            dict[str, Any]: The server reply.

        Raises:
            ClientClosedError: If the client has been closed.
            UsageError: If the session belongs to another client.
            SessionEndedError: If the session has ended.
            SessionInUseError: If the session is already running another command.
            NetworkError, OperationFailure: Propagated from the transport.
        """
        self._check_open()
        if session is None:
            runner: ScopedSessionRunner[dict[str, Any]] = ScopedSessionRunner(
                self,
                lambda implicit_session: self._execute(implicit_session, command, retryable),
                implicit=True,
            )
            return await runner.run()

        if session.client is not self:
            raise UsageError("Session was started by a different client")
        return await self._execute(session, command, retryable)

    async def _execute(
        self, session: ClientSession, command: Mapping[str, Any], retryable: bool
    ) -> dict[str, Any]:
        async with session._checkout():
            decorated = self._decorator.apply(session, command, retryable=retryable)
            try:
                reply = await self._transport.run_command(decorated)
            except Exception as e:
                self._decorator.process_error(session, e)
                raise
            self._decorator.process_reply(session, reply)
            return reply

    # ===== Lifecycle =====

    async def close(self) -> None:
        """
        End every active session, then send ``endSessions`` for all idle server sessions.

        Never fails because the server is unreachable. Idempotent.
        """
        async with self._close_lock:
            if self._closed:
                _LOGGER.debug("[SessionClient] close() called on a closed client")
                return
            self._closed = True

            start_time = time.time()
            active = list(self._active_sessions)
            _LOGGER.info(f"[SessionClient] closing; ending {len(active)} active sessions...")
            for session in active:
                await session.end()

            self._shutdown_started = True
            batches = await self._shutdown.shutdown()
            _LOGGER.info(
                f"[SessionClient] closed. Sent {batches} endSessions batch(es) in {time.time() - start_time:.2f}s"
            )

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise ClientClosedError()

    def _register_session(self, session: ClientSession) -> None:
        self._active_sessions.add(session)

    def _deregister_session(self, session: ClientSession) -> None:
        self._active_sessions.discard(session)
