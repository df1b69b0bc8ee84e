"""
Scoped session runner ("withSession").

Starts a session, runs a caller-supplied operation with it, and ends the session exactly once on
every exit path:

    - the operation returns a plain value
    - the operation returns an awaitable that later resolves
    - the operation returns an awaitable that later raises
    - the operation raises before producing an awaitable
    - the awaiting task is cancelled or times out

The operation's outcome (value or exception) is reported unchanged. Implicit per-operation sessions
are the same runner with ``implicit=True``.
"""

import asyncio
import enum
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Generic, TypeVar

from logical_sessions._exceptions import InternalError

from ._client_session import ClientSession, SessionOptions

if TYPE_CHECKING:
    from logical_sessions.client import SessionClient  # pragma: no cover

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class RunnerState(enum.Enum):
    """Lifecycle phases of a ScopedSessionRunner."""

    CREATED = "created"
    RUNNING = "running"
    COMPLETING = "completing"
    DONE = "done"


class ScopedSessionRunner(Generic[T]):
    """
    Runs one operation under one session and guarantees a single ``end()``.

    A runner is single-use; calling `run()` a second time raises InternalError.
    """

    def __init__(
        self,
        client: "SessionClient",
        operation: Callable[[ClientSession], Awaitable[T] | T],
        options: SessionOptions | None = None,
        *,
        implicit: bool = False,
    ):
        self._client = client
        self._operation = operation
        self._options = options
        self._implicit = implicit
        self._state = RunnerState.CREATED
        self._end_calls = 0

    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def end_calls(self) -> int:
        """How many times this runner has ended its session (0 or 1)."""
        return self._end_calls

    async def run(self) -> T:
        """
        Start a session, run the operation with it, and end the session.

        Returns:
            T: The operation's value, or the value its awaitable resolved to.

        Raises:
            InternalError: If the runner has already been run.
            Exception: Whatever the operation raised, unchanged.
        """
        if self._state is not RunnerState.CREATED:
            raise InternalError(
                f"ScopedSessionRunner cannot be run twice (state: {self._state.value})"
            )

        try:
            session = await ClientSession.start(
                self._client, self._options, implicit=self._implicit
            )
        except BaseException:
            self._state = RunnerState.DONE
            raise

        self._state = RunnerState.RUNNING
        try:
            result = self._operation(session)
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            await self._complete(session)

    async def _complete(self, session: ClientSession) -> None:
        if self._state is not RunnerState.RUNNING:
            return
        self._state = RunnerState.COMPLETING
        self._end_calls += 1
        try:
            # A second cancellation must not interrupt returning the server session
            await asyncio.shield(session.end())
        except Exception as e:
            # The operation outcome is reported, not the cleanup failure
            _LOGGER.error(f"[ScopedSessionRunner] Failed to end session: {e}")
            _LOGGER.debug(f"[ScopedSessionRunner] Session state after error: {session!r}", exc_info=True)
        finally:
            self._state = RunnerState.DONE


async def with_session(
    client: "SessionClient",
    operation: Callable[[ClientSession], Awaitable[T] | T],
    options: SessionOptions | None = None,
    *,
    implicit: bool = False,
) -> T:
    """
    Run ``operation`` under a fresh session that is ended however the operation finishes.

    Args:
        client (SessionClient): The client to start the session from.
        operation (Callable): Called with the session; may return a value or an awaitable.
        options (SessionOptions | None): Options for the session.
        implicit (bool): True to mark the session as driver-created.

    Returns:
        T: The operation's result.
    """
    runner: ScopedSessionRunner[T] = ScopedSessionRunner(
        client, operation, options, implicit=implicit
    )
    return await runner.run()
