"""
Validation and defaults for the ``client`` configuration section.

The ``client`` section tunes the session subsystem of a single client instance:

- ``causal_consistency`` (bool): Default causal consistency for sessions that do not set it.
- ``session_timeout_minutes`` (int | None): Logical session timeout to assume until the server
  advertises one. ``None`` means unknown, in which case idle sessions never expire locally.
- ``end_sessions_batch_size`` (int): Maximum number of session ids per ``endSessions`` command.
- ``end_sessions_timeout_seconds`` (int | float): Upper bound on each ``endSessions`` dispatch at shutdown.

All validation errors raise `ClientConfigurationError` with descriptive messages.
"""

__all__ = [
    "DEFAULT_CLIENT_CONFIG",
    "MAX_END_SESSIONS",
    "validate_client_config",
    "apply_client_defaults",
]

import logging
import types
from typing import Any

from logical_sessions._exceptions import ClientConfigurationError

_LOGGER = logging.getLogger(__name__)

MAX_END_SESSIONS = 10000
"""int: Largest number of session ids the server accepts in one ``endSessions`` command."""

DEFAULT_CLIENT_CONFIG: dict[str, Any] = {
    "causal_consistency": True,
    "session_timeout_minutes": None,
    "end_sessions_batch_size": MAX_END_SESSIONS,
    "end_sessions_timeout_seconds": 10.0,
}
"""Defaults applied to any field missing from the ``client`` section."""

_ALLOWED_CLIENT_FIELDS: dict[str, type | tuple[type, ...]] = {
    "causal_consistency": bool,
    "session_timeout_minutes": (int, types.NoneType),
    "end_sessions_batch_size": int,
    "end_sessions_timeout_seconds": (int, float),
}


def validate_client_config(client_config: Any | None) -> None:
    """
    Validate the ``client`` section of the configuration, if present.

    Args:
        client_config (dict[str, Any] | None): The ``client`` section, or None if absent.

    Raises:
        ClientConfigurationError: If the section is not a dict, contains unknown fields,
            has a field of the wrong type, or a numeric field is out of range.
    """
    if client_config is None:
        return

    if not isinstance(client_config, dict):
        raise ClientConfigurationError("'client' must be a dictionary in configuration")

    for field_name, value in client_config.items():
        if field_name not in _ALLOWED_CLIENT_FIELDS:
            raise ClientConfigurationError(
                f"Unknown field '{field_name}' in client configuration"
            )
        expected = _ALLOWED_CLIENT_FIELDS[field_name]
        # bool is a subclass of int; only accept it where bool is expected
        if isinstance(value, bool) and expected is not bool:
            raise ClientConfigurationError(
                f"Field '{field_name}' in client configuration must be of type {_type_names(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ClientConfigurationError(
                f"Field '{field_name}' in client configuration must be of type {_type_names(expected)}, got {type(value).__name__}"
            )

    timeout_minutes = client_config.get("session_timeout_minutes")
    if timeout_minutes is not None and timeout_minutes < 1:
        raise ClientConfigurationError(
            "'session_timeout_minutes' must be a positive integer or null"
        )

    batch_size = client_config.get("end_sessions_batch_size")
    if batch_size is not None and batch_size <= 0:
        raise ClientConfigurationError("'end_sessions_batch_size' must be positive")

    dispatch_timeout = client_config.get("end_sessions_timeout_seconds")
    if dispatch_timeout is not None and dispatch_timeout <= 0:
        raise ClientConfigurationError(
            "'end_sessions_timeout_seconds' must be positive"
        )


def apply_client_defaults(client_config: dict[str, Any] | None) -> dict[str, Any]:
    """
    Return a new dict with every missing ``client`` field filled from `DEFAULT_CLIENT_CONFIG`.

    The input is validated first and is never modified.

    Args:
        client_config (dict[str, Any] | None): The ``client`` section, or None.

    Returns:
        dict[str, Any]: A complete client configuration.

    Raises:
        ClientConfigurationError: If the section is invalid.
    """
    validate_client_config(client_config)
    merged = dict(DEFAULT_CLIENT_CONFIG)
    merged.update(client_config or {})
    _LOGGER.debug(f"Effective client configuration: {merged}")
    return merged


def _type_names(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(
            "None" if t is types.NoneType else t.__name__ for t in expected
        )
    return expected.__name__
