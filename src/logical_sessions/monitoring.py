"""
Session lifecycle events and listeners.

Host applications and test harnesses register `SessionEventListener` instances with a client to
observe session creation, session end, and the ``endSessions`` batches dispatched at shutdown.
Together these let a harness assert that no session leaked: every created session has a matching
ended event, and every idle id at shutdown appears in exactly one dispatched batch.

Listener exceptions are caught and logged by `EventPublisher`; they never affect the operation
that triggered the event.

Usage Example:
    ```python
    class LeakChecker(SessionEventListener):
        def __init__(self):
            self.open = set()

        def session_created(self, event):
            self.open.add(event.session_key)

        def session_ended(self, event):
            self.open.discard(event.session_key)

        def end_sessions_dispatched(self, event):
            pass

    client = SessionClient(transport, listeners=[LeakChecker()])
    ```
"""

__all__ = [
    "SessionEventListener",
    "SessionCreatedEvent",
    "SessionEndedEvent",
    "EndSessionsEvent",
    "EventPublisher",
    "session_key",
]

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

_LOGGER = logging.getLogger(__name__)


def session_key(session_id: Mapping[str, Any]) -> bytes:
    """Return a hashable key for an lsid document (the raw bytes of its ``id``)."""
    return bytes(session_id["id"])


@dataclass(frozen=True)
class SessionCreatedEvent:
    """Published when a ClientSession is started.

    Attributes:
        session_id: The lsid document of the server session the client session holds.
        implicit: True if the driver created the session for a single operation.
    """

    session_id: Mapping[str, Any]
    implicit: bool

    @property
    def session_key(self) -> bytes:
        return session_key(self.session_id)


@dataclass(frozen=True)
class SessionEndedEvent:
    """Published exactly once when a ClientSession ends.

    Attributes:
        session_id: The lsid document of the server session the client session held.
        implicit: True if the driver created the session for a single operation.
        dirty: True if the server session was discarded instead of returned to the pool.
    """

    session_id: Mapping[str, Any]
    implicit: bool
    dirty: bool

    @property
    def session_key(self) -> bytes:
        return session_key(self.session_id)


@dataclass(frozen=True)
class EndSessionsEvent:
    """Published once per ``endSessions`` batch dispatched at client shutdown.

    Attributes:
        session_ids: The lsid documents in the batch, in dispatch order.
        succeeded: False if the dispatch failed or timed out.
        failure: The ShutdownDispatchError describing the failure, or None.
    """

    session_ids: tuple[Mapping[str, Any], ...]
    succeeded: bool
    failure: Exception | None = None


class SessionEventListener:
    """Abstract base class for session lifecycle listeners.

    Subclasses must override all three callbacks.
    """

    def session_created(self, event: SessionCreatedEvent) -> None:
        """Abstract method to handle a `SessionCreatedEvent`."""
        raise NotImplementedError

    def session_ended(self, event: SessionEndedEvent) -> None:
        """Abstract method to handle a `SessionEndedEvent`."""
        raise NotImplementedError

    def end_sessions_dispatched(self, event: EndSessionsEvent) -> None:
        """Abstract method to handle an `EndSessionsEvent`."""
        raise NotImplementedError


class EventPublisher:
    """Fan-out of session events to registered listeners.

    Each listener is called in registration order. An exception raised by a listener is logged
    and swallowed so that a faulty listener cannot break session bookkeeping.
    """

    def __init__(self, listeners: Iterable[SessionEventListener] | None = None):
        self._listeners: list[SessionEventListener] = []
        for listener in listeners or ():
            self.add_listener(listener)

    def add_listener(self, listener: SessionEventListener) -> None:
        """
        Register a listener.

        Args:
            listener (SessionEventListener): The listener to register.

        Raises:
            TypeError: If the listener is not a SessionEventListener.
        """
        if not isinstance(listener, SessionEventListener):
            raise TypeError(
                f"Listeners must be SessionEventListener instances, got {type(listener).__name__}"
            )
        self._listeners.append(listener)

    @property
    def enabled(self) -> bool:
        """True if at least one listener is registered."""
        return bool(self._listeners)

    def publish_session_created(self, session_id: Mapping[str, Any], implicit: bool) -> None:
        self._publish("session_created", SessionCreatedEvent(session_id, implicit))

    def publish_session_ended(
        self, session_id: Mapping[str, Any], implicit: bool, dirty: bool
    ) -> None:
        self._publish("session_ended", SessionEndedEvent(session_id, implicit, dirty))

    def publish_end_sessions(
        self,
        session_ids: Iterable[Mapping[str, Any]],
        succeeded: bool,
        failure: Exception | None = None,
    ) -> None:
        self._publish(
            "end_sessions_dispatched",
            EndSessionsEvent(tuple(session_ids), succeeded, failure),
        )

    def _publish(self, callback_name: str, event: Any) -> None:
        for listener in self._listeners:
            try:
                getattr(listener, callback_name)(event)
            except Exception as e:
                _LOGGER.error(
                    f"[EventPublisher] Listener {listener!r} raised in {callback_name}: {e}",
                    exc_info=True,
                )
