"""
Outgoing command decoration and reply absorption.

The CommandDecorator is the only place that translates ClientSession state into wire metadata and
feeds reply metadata back into it:

Outgoing (`apply`):
    - ``lsid``: the session identifier
    - ``txnNumber``: incremented, then attached, for retryable operations
    - ``readConcern.afterClusterTime``: for causally consistent sessions with an operation time,
      on commands that accept a read concern
    - ``$clusterTime``: the greater of the client-wide and session cluster times

Incoming (`process_reply`, `process_error`):
    - ``$clusterTime`` and ``operationTime`` advance the session (and the client-wide tracker)
    - a network-level fault marks the session dirty; server error documents never do
"""

import logging
from collections.abc import Mapping
from typing import Any

from logical_sessions._exceptions import OperationFailure

from ._client_session import ClientSession
from ._cluster_time import ClusterTimeTracker, newer_cluster_time

_LOGGER = logging.getLogger(__name__)

_READ_CONCERN_COMMANDS = frozenset(
    {
        "aggregate",
        "count",
        "distinct",
        "find",
        "geoNear",
        "geoSearch",
        "parallelCollectionScan",
    }
)


def command_supports_read_concern(command: Mapping[str, Any]) -> bool:
    """
    Return True if the command accepts a read concern.

    The command name is the first key of the command document. ``mapReduce`` only qualifies when
    its output is inline.
    """
    name = next(iter(command), None)
    if name in _READ_CONCERN_COMMANDS:
        return True
    if name == "mapReduce":
        out = command.get("out")
        return out == "inline" or (isinstance(out, Mapping) and out.get("inline") == 1)
    return False


def is_network_fault(error: BaseException) -> bool:
    """True for transport-level failures (connection errors and timeouts), False for server errors."""
    return isinstance(error, (ConnectionError, TimeoutError))


class CommandDecorator:
    """
    Stamps session metadata onto commands and absorbs reply metadata.

    Stateless apart from the client-wide cluster time tracker it gossips from.
    """

    def __init__(self, cluster_time_tracker: ClusterTimeTracker):
        self._tracker = cluster_time_tracker

    def apply(
        self,
        session: ClientSession | None,
        command: Mapping[str, Any],
        *,
        retryable: bool = False,
    ) -> dict[str, Any]:
        """
        Return a copy of ``command`` carrying the session's metadata.

        A caller-supplied ``readConcern`` is kept; ``afterClusterTime`` is merged into it unless
        the caller already set one.

        Args:
            session (ClientSession | None): The session the command runs under, or None.
            command (Mapping[str, Any]): The command document. It is not modified.
            retryable (bool): True for retryable or transactional operations.

        Returns:
            dict[str, Any]: The decorated command.

        Raises:
            SessionEndedError: If the session has already ended.
        """
        decorated = dict(command)
        session_cluster_time = None

        if session is not None:
            server_session = session._check_ended()
            server_session.touch()
            decorated["lsid"] = server_session.session_id

            if retryable:
                decorated["txnNumber"] = server_session.increment_transaction_number()

            if (
                session.options.causal_consistency
                and session.operation_time is not None
                and command_supports_read_concern(decorated)
            ):
                read_concern = dict(decorated.get("readConcern") or {})
                if "afterClusterTime" not in read_concern:
                    read_concern["afterClusterTime"] = session.operation_time
                decorated["readConcern"] = read_concern

            session_cluster_time = session.cluster_time

        cluster_time = newer_cluster_time(self._tracker.cluster_time, session_cluster_time)
        if cluster_time is not None:
            decorated["$clusterTime"] = cluster_time

        return decorated

    def process_reply(
        self, session: ClientSession | None, reply: Mapping[str, Any]
    ) -> None:
        """
        Absorb ``$clusterTime`` and ``operationTime`` from a reply.

        Args:
            session (ClientSession | None): The session the command ran under, or None.
            reply (Mapping[str, Any]): The server reply document.
        """
        cluster_time = reply.get("$clusterTime")
        if session is None:
            self._tracker.advance(cluster_time)
            return
        session._advance_cluster_time(cluster_time)
        session._advance_operation_time(reply.get("operationTime"))

    def process_error(self, session: ClientSession | None, error: BaseException) -> None:
        """
        React to a failed command attempt.

        A network-level fault marks the session dirty, since the server-side state of the
        session is unknown. A server error document does not; its metadata is absorbed like a
        reply. The error itself is left for the caller to re-raise.

        Args:
            session (ClientSession | None): The session the command ran under, or None.
            error (BaseException): The failure raised by the transport.
        """
        if is_network_fault(error):
            if session is not None:
                _LOGGER.warning(
                    f"[CommandDecorator] Network fault on a session command, session will be discarded: {error}"
                )
                session.mark_dirty()
        elif isinstance(error, OperationFailure):
            self.process_reply(session, error.details)
