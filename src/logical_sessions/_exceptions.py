"""Custom exception types for the logical session subsystem.

Defines the exception hierarchy used by the session pool, client sessions, command decoration,
and client shutdown. Callers can catch every error raised by this package with a single
``except SessionsError`` clause, or target the specific subclasses below.

Exception Hierarchy:
    - Base exceptions: SessionsError (base for all exceptions), InternalError (extends SessionsError and RuntimeError)
    - Usage exceptions: UsageError (extends SessionsError), SessionEndedError, SessionInUseError, ClientClosedError (extend UsageError)
    - Allocation exceptions: FatalAllocationError (extends SessionsError)
    - Transport exceptions: NetworkError (extends SessionsError and ConnectionError), OperationFailure (extends SessionsError)
    - Shutdown exceptions: ShutdownDispatchError (extends SessionsError)
    - Configuration exceptions: ConfigurationError (extends SessionsError), ClientConfigurationError (extends ConfigurationError)

Error Policy:
    - Usage errors are caller contract violations. They are raised synchronously and never retried.
    - NetworkError is raised by a transport. The command decorator marks the session dirty and the
      error continues to propagate unchanged as the failure of the operation.
    - FatalAllocationError is raised to the caller of ``SessionPool.acquire``; nothing retries it.
    - ShutdownDispatchError is never raised out of ``SessionClient.close()``. It is only logged and
      attached to the published ``EndSessionsEvent``.

Usage Example:
    ```python
    from logical_sessions._exceptions import NetworkError, SessionEndedError

    try:
        reply = await client.run_command({"find": "foo"}, session=session)
    except SessionEndedError:
        # The session was ended before this command
        raise
    except NetworkError as e:
        # The session is now dirty and will be discarded when it ends
        logger.warning(f"Network failure: {e}")
        raise
    ```
"""

from typing import Any

__all__ = [
    # Base exceptions
    "SessionsError",
    "InternalError",
    # Usage exceptions
    "UsageError",
    "SessionEndedError",
    "SessionInUseError",
    "ClientClosedError",
    # Allocation exceptions
    "FatalAllocationError",
    # Transport exceptions
    "NetworkError",
    "OperationFailure",
    # Shutdown exceptions
    "ShutdownDispatchError",
    # Configuration exceptions
    "ConfigurationError",
    "ClientConfigurationError",
]


# Base Exceptions


class SessionsError(Exception):
    """Base exception for all logical session errors.

    All exceptions raised by this package inherit from this class, either directly or
    through one of the more specific base classes (UsageError, ConfigurationError, etc.).

    Examples:
        ```python
        try:
            await client.run_command(command)
        except SessionsError as e:
            logger.error(f"Session operation failed: {e}")
        ```
    """

    pass


class InternalError(SessionsError, RuntimeError):
    """Internal errors indicating a broken invariant in the session subsystem.

    This exception inherits from both SessionsError (for unified error handling) and
    RuntimeError (to emphasize that this represents a programming error, not a
    recoverable condition).

    InternalError is raised when:
    - A server session is released to the pool twice
    - A ScopedSessionRunner is run more than once
    - Unexpected internal state is encountered
    """

    pass


# Usage Exceptions


class UsageError(SessionsError):
    """Base exception for caller contract violations.

    Raised synchronously to the caller and never retried. Use the subclasses for the
    specific violations; UsageError itself is raised for violations that do not fit them,
    such as using a session with a client that did not start it.
    """

    pass


class SessionEndedError(UsageError):
    """Raised when a session that has already ended is used for a command."""

    def __init__(self, message: str = "Cannot use ended session: session already ended"):
        super().__init__(message)


class SessionInUseError(UsageError):
    """Raised when a session is used by a second operation while the first is in flight.

    A ClientSession may only be used by one operation at a time. Concurrent tasks that
    need sessions must each start their own.
    """

    def __init__(self, message: str = "Session is in use by another operation"):
        super().__init__(message)


class ClientClosedError(UsageError):
    """Raised when a closed client is asked to start a session or run a command."""

    def __init__(self, message: str = "Cannot use a client after it has been closed"):
        super().__init__(message)


# Allocation Exceptions


class FatalAllocationError(SessionsError):
    """Raised when a new server session identifier cannot be generated.

    This error is fatal for the acquire call that triggered it. The pool does not retry
    internally; the error is surfaced to the caller of ``acquire``.
    """

    pass


# Transport Exceptions


class NetworkError(SessionsError, ConnectionError):
    """Network-level fault reported by a command transport.

    Transports raise this when a command attempt fails without a server reply document
    (connection reset, socket timeout, etc.). Because the server-side state of the session
    is unknown after such a fault, the session that carried the command is marked dirty.

    Multiple Inheritance:
        Inherits from ConnectionError so that generic network error handlers also catch it.
    """

    pass


class OperationFailure(SessionsError):
    """Server-returned error document for a command.

    Server errors are logical errors; they never dirty the session. The reply document is
    kept in ``details`` so cluster and operation times carried by the error can still be
    absorbed.

    Attributes:
        code (int | None): The server error code, if any.
        details (dict[str, Any]): The full error reply document.
    """

    def __init__(
        self,
        message: str,
        code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        """Initialize the exception.

        Args:
            message (str): Human-readable error message from the server.
            code (int | None): The server error code, if any.
            details (dict[str, Any] | None): The error reply document. Defaults to an empty dict.
        """
        super().__init__(message)
        self.code = code
        self.details: dict[str, Any] = details if details is not None else {}


# Shutdown Exceptions


class ShutdownDispatchError(SessionsError):
    """A best-effort ``endSessions`` batch could not be delivered.

    Never propagated out of client shutdown. The coordinator logs it and attaches it to
    the ``EndSessionsEvent`` so listeners can observe the failure. The server reclaims the
    sessions on its own after the logical session timeout.
    """

    pass


# Configuration Exceptions


class ConfigurationError(SessionsError):
    """Base class for configuration loading and validation errors."""

    pass


class ClientConfigurationError(ConfigurationError):
    """Raised when the ``client`` configuration section is invalid."""

    pass
