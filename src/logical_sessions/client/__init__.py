"""Client interface of the logical session subsystem.

Classes:
    SessionClient: Owns the session pool, cluster time, and shutdown protocol for one client.
    CommandTransport: Protocol for the external collaborator that sends commands.
"""

from ._client import SessionClient
from ._transport import CommandTransport, NetworkError, OperationFailure

__all__ = [
    "CommandTransport",
    "NetworkError",
    "OperationFailure",
    "SessionClient",
]
