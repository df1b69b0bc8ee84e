"""
Logical session building blocks.

This package holds the components a client wires together to manage server session identifiers:

    - ServerSession: one server-assigned identifier plus usage bookkeeping.
    - SessionPool: coroutine-safe LIFO store of idle server sessions (acquire/release/discard/drain).
    - ClusterTimeTracker: the client-wide highest cluster time.
    - ClientSession, SessionOptions: the user-facing session handle and its causal-consistency state.
    - CommandDecorator: stamps session metadata on commands and absorbs reply metadata.
    - ScopedSessionRunner, with_session: end a session exactly once however an operation finishes.
    - ShutdownCoordinator: sends best-effort ``endSessions`` batches when the client closes.
"""

from ._client_session import ClientSession, SessionOptions
from ._cluster_time import (
    ClusterTime,
    ClusterTimeTracker,
    newer_cluster_time,
    validate_cluster_time,
)
from ._decorator import CommandDecorator, command_supports_read_concern, is_network_fault
from ._pool import SessionPool
from ._runner import RunnerState, ScopedSessionRunner, with_session
from ._server_session import ServerSession
from ._shutdown import ShutdownCoordinator

__all__ = [
    "ClientSession",
    "ClusterTime",
    "ClusterTimeTracker",
    "CommandDecorator",
    "RunnerState",
    "ScopedSessionRunner",
    "ServerSession",
    "SessionOptions",
    "SessionPool",
    "ShutdownCoordinator",
    "command_supports_read_concern",
    "is_network_fault",
    "newer_cluster_time",
    "validate_cluster_time",
    "with_session",
]
