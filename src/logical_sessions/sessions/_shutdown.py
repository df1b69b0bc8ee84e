"""
Best-effort reclamation of server-side sessions at client shutdown.

On close, the ShutdownCoordinator drains every idle server session from the pool, splits the
identifiers into batches no larger than the server's ``endSessions`` limit, and dispatches one
``endSessions`` administrative command per batch. Dispatch is fire-and-forget in the sense that
matters: failures and timeouts are logged and published as events but never retried and never
raised, because the server reclaims idle sessions on its own after the logical session timeout.
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from logical_sessions._exceptions import ShutdownDispatchError
from logical_sessions.config import MAX_END_SESSIONS
from logical_sessions.monitoring import EventPublisher

from ._pool import SessionPool

if TYPE_CHECKING:
    from logical_sessions.client import CommandTransport  # pragma: no cover

_LOGGER = logging.getLogger(__name__)


class ShutdownCoordinator:
    """
    Drains the session pool and sends ``endSessions`` batches.

    Dirty sessions never reach the pool, so they are never included.
    """

    def __init__(
        self,
        pool: SessionPool,
        transport: "CommandTransport",
        *,
        batch_size: int = MAX_END_SESSIONS,
        timeout: float | None = 10.0,
        publisher: EventPublisher | None = None,
    ):
        """
        Args:
            pool (SessionPool): The pool to drain.
            transport (CommandTransport): Used to send the ``endSessions`` commands.
            batch_size (int): Maximum session ids per command.
            timeout (float | None): Seconds to wait for each dispatch. None waits indefinitely.
            publisher (EventPublisher | None): Receives one EndSessionsEvent per batch.

        Raises:
            ValueError: If batch_size is not positive.
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._pool = pool
        self._transport = transport
        self._batch_size = batch_size
        self._timeout = timeout
        self._publisher = publisher or EventPublisher()

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def batch(self, session_ids: list[Mapping[str, Any]]) -> list[list[Mapping[str, Any]]]:
        """Split session ids into ordered batches of at most `batch_size`."""
        return [
            session_ids[i : i + self._batch_size]
            for i in range(0, len(session_ids), self._batch_size)
        ]

    async def shutdown(self) -> int:
        """
        Drain the pool and dispatch one ``endSessions`` command per batch.

        If the pool is empty, no command is sent.

        Returns:
            int: The number of batches dispatched (successful or not).
        """
        start_time = time.time()
        drained = await self._pool.drain()
        if not drained:
            _LOGGER.debug("[ShutdownCoordinator] No idle sessions to end")
            return 0

        batches = self.batch([s.session_id for s in drained])
        _LOGGER.info(
            f"[ShutdownCoordinator] Ending {len(drained)} sessions in {len(batches)} batch(es)..."
        )
        results = await asyncio.gather(*(self._dispatch(batch) for batch in batches))

        _LOGGER.info(
            f"[ShutdownCoordinator] Dispatched {len(batches)} endSessions batch(es), "
            f"{results.count(False)} failed, in {time.time() - start_time:.2f}s"
        )
        return len(batches)

    async def _dispatch(self, batch: list[Mapping[str, Any]]) -> bool:
        command = {"endSessions": batch, "$db": "admin"}
        try:
            await asyncio.wait_for(
                self._transport.run_command(command), timeout=self._timeout
            )
        except Exception as e:
            failure = ShutdownDispatchError(
                f"endSessions for {len(batch)} sessions failed: {e!r}"
            )
            failure.__cause__ = e
            _LOGGER.warning(f"[ShutdownCoordinator] {failure}")
            self._publisher.publish_end_sessions(batch, False, failure)
            return False

        self._publisher.publish_end_sessions(batch, True)
        return True
