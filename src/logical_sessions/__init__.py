"""
Client-side logical session subsystem for a session-aware database driver.

Pools server session identifiers, tracks causal-consistency state per session, decorates commands
with session metadata, guarantees session release however an operation finishes, and sends
best-effort ``endSessions`` commands when a client closes.

Subpackages:
    - client: SessionClient (the owning client) and the CommandTransport protocol.
    - sessions: ServerSession, SessionPool, ClientSession, CommandDecorator, ScopedSessionRunner,
      ShutdownCoordinator.
    - config: JSON configuration loading and validation.
    - monitoring: session lifecycle events and listeners.
"""

import logging

from ._version import __version__
from .client import CommandTransport, SessionClient
from .sessions import ClientSession, SessionOptions

__all__ = [
    "__version__",
    "ClientSession",
    "CommandTransport",
    "SessionClient",
    "SessionOptions",
]

_LOGGER = logging.getLogger(__name__)
_LOGGER.addHandler(logging.NullHandler())
