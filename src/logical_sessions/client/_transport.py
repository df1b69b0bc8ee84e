"""
Command transport seam.

The session subsystem does not encode, frame, or route commands. It hands a decorated command
document to a CommandTransport and receives the reply document back. Transports report failures
with two exception types:

    - NetworkError for network-level faults (no reply document was received)
    - OperationFailure for server-returned error documents
"""

from typing import Any, Protocol

from logical_sessions._exceptions import NetworkError, OperationFailure

__all__ = ["CommandTransport", "NetworkError", "OperationFailure"]


class CommandTransport(Protocol):
    """Protocol for anything that can run one command document against the server."""

    async def run_command(self, command: dict[str, Any]) -> dict[str, Any]:
        """Send a command and return the server's reply document.

        Args:
            command (dict[str, Any]): The command document, already decorated with session metadata.

        Returns:
            dict[str, Any]: The reply document. May carry ``operationTime`` and ``$clusterTime``.

        Raises:
            NetworkError: On a network-level fault.
            OperationFailure: If the server returned an error document.
        """
        ...  # pragma: no cover
