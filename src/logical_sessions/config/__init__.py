"""
Async configuration management for the logical session subsystem.

Configuration is loaded from a JSON file specified by the LOGICAL_SESSIONS_CONFIG_FILE environment
variable using native async file I/O (aiofiles), validated, and cached.

Features:
    - Coroutine-safe, cached loading of configuration using asyncio.Lock.
    - Strict validation of configuration structure and values.
    - Helper to access the ``client`` section with defaults applied.
    - Uses aiofiles for non-blocking config file reads.

Configuration Schema:
---------------------
The configuration file must be a JSON object. It may contain the following top-level key:

  - `client` (dict, optional): Settings for the session subsystem of one client.

        - `causal_consistency` (bool): Default causal consistency for new sessions. Default: true.
        - `session_timeout_minutes` (int | null): Logical session timeout to assume until the
          server advertises one. Default: null (idle sessions never expire locally).
        - `end_sessions_batch_size` (int): Maximum session ids per ``endSessions`` command. Default: 10000.
        - `end_sessions_timeout_seconds` (number): Bound on each shutdown dispatch. Default: 10.0.

Example Valid Configuration:
---------------------------
```json
{
    "client": {
        "causal_consistency": true,
        "session_timeout_minutes": 30,
        "end_sessions_batch_size": 10000,
        "end_sessions_timeout_seconds": 5
    }
}
```

Environment Variables:
---------------------
- `LOGICAL_SESSIONS_CONFIG_FILE`: Path to the configuration JSON file.
"""

__all__ = [
    "ConfigManager",
    "CONFIG_ENV_VAR",
    "DEFAULT_CLIENT_CONFIG",
    "MAX_END_SESSIONS",
    "ConfigurationError",
    "ClientConfigurationError",
    "validate_config",
    "validate_client_config",
    "apply_client_defaults",
    "get_config_path",
    "get_client_config",
    "load_and_validate_config",
]

import asyncio
import json
import logging
import os
from typing import Any, cast

import aiofiles

from logical_sessions._exceptions import ClientConfigurationError, ConfigurationError

from ._client import (
    DEFAULT_CLIENT_CONFIG,
    MAX_END_SESSIONS,
    apply_client_defaults,
    validate_client_config,
)

_LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LOGICAL_SESSIONS_CONFIG_FILE"
"""
str: Name of the environment variable specifying the path to the configuration file.
"""

_ALLOWED_TOP_LEVEL_KEYS: set[str] = {"client"}
"""Set of all allowed top-level keys in the configuration file."""


class ConfigManager:
    """
    Async configuration manager.

    Encapsulates loading, validating, and caching the configuration. The cache is protected by
    an asyncio.Lock so concurrent callers load the file at most once.
    """

    def __init__(self) -> None:
        self._cache: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    async def clear_config_cache(self) -> None:
        """
        Clear the cached configuration (coroutine-safe).

        The next `get_config()` call reloads from disk.
        """
        _LOGGER.debug("Clearing configuration cache...")
        async with self._lock:
            self._cache = None

        _LOGGER.debug("Configuration cache cleared.")

    async def _set_config_cache(self, config: dict[str, Any]) -> None:
        """
        PRIVATE: Set the in-memory configuration cache, bypassing file I/O (for tests).

        Args:
            config (dict[str, Any]): The configuration dictionary. It is validated before caching.

        Raises:
            ConfigurationError: If the provided configuration is invalid.
        """
        async with self._lock:
            self._cache = validate_config(config)

    async def get_config(self) -> dict[str, Any]:
        """
        Load and validate the configuration from disk (coroutine-safe).

        Loads from the path in LOGICAL_SESSIONS_CONFIG_FILE on first call and returns the cached
        result afterwards.

        Returns:
            dict[str, Any]: The validated configuration dictionary.

        Raises:
            RuntimeError: If the LOGICAL_SESSIONS_CONFIG_FILE environment variable is not set.
            ConfigurationError: If the file cannot be read, is not JSON, or fails validation.
        """
        _LOGGER.debug("Loading logical sessions configuration...")
        async with self._lock:
            if self._cache is not None:
                _LOGGER.debug("Using cached logical sessions configuration.")
                return self._cache

            config_path = get_config_path()
            validated = await load_and_validate_config(config_path)
            self._cache = validated
            _LOGGER.info(f"Loaded client configuration: {validated.get('client', {})}")
            return validated


async def get_client_config(config_manager: ConfigManager) -> dict[str, Any]:
    """
    Return the ``client`` section with defaults applied.

    Args:
        config_manager (ConfigManager): The ConfigManager instance to read from.

    Returns:
        dict[str, Any]: A complete client configuration dictionary.
    """
    config = await config_manager.get_config()
    return apply_client_defaults(config.get("client"))


async def _load_config_from_file(config_path: str) -> dict[str, Any]:
    """
    Load and parse the configuration from a JSON file asynchronously.

    Args:
        config_path (str): The file path to the configuration JSON file.

    Returns:
        dict[str, Any]: The parsed configuration.

    Raises:
        ConfigurationError: If the file is not found, cannot be read, or is not valid JSON.
    """
    try:
        async with aiofiles.open(config_path) as f:
            content = await f.read()
        return cast(dict[str, Any], json.loads(content))
    except FileNotFoundError:
        _LOGGER.error(f"Configuration file not found: {config_path}")
        raise ConfigurationError(f"Configuration file not found: {config_path}") from None
    except PermissionError:
        _LOGGER.error(
            f"Permission denied when trying to read configuration file: {config_path}"
        )
        raise ConfigurationError(
            f"Permission denied when trying to read configuration file: {config_path}"
        ) from None
    except json.JSONDecodeError as e:
        _LOGGER.error(f"Invalid JSON in configuration file {config_path}: {e}")
        raise ConfigurationError(
            f"Invalid JSON in configuration file {config_path}: {e}"
        ) from e


def get_config_path() -> str:
    """
    Retrieve the configuration file path from the environment variable.

    Returns:
        str: The value of LOGICAL_SESSIONS_CONFIG_FILE.

    Raises:
        RuntimeError: If the environment variable is not set.
    """
    if CONFIG_ENV_VAR not in os.environ:
        _LOGGER.error(f"Environment variable {CONFIG_ENV_VAR} is not set.")
        raise RuntimeError(f"Environment variable {CONFIG_ENV_VAR} is not set.")
    config_path = os.environ[CONFIG_ENV_VAR]
    _LOGGER.info(f"Environment variable {CONFIG_ENV_VAR} is set to: {config_path}")
    return config_path


async def load_and_validate_config(config_path: str) -> dict[str, Any]:
    """
    Load and validate the configuration from a JSON file.

    Args:
        config_path (str): The path to the configuration JSON file.

    Returns:
        dict[str, Any]: The validated configuration dictionary.

    Raises:
        ConfigurationError: If the file cannot be read, is not valid JSON, or fails validation.
    """
    data = await _load_config_from_file(config_path)
    try:
        return validate_config(data)
    except ConfigurationError as e:
        _LOGGER.error(f"Configuration validation failed for {config_path}: {e}")
        raise


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """
    Validate the configuration dictionary.

    Args:
        config (dict[str, Any]): The configuration dictionary to validate.

    Returns:
        dict[str, Any]: The validated configuration dictionary (unchanged).

    Raises:
        ConfigurationError: If the configuration is not a dict or has unknown top-level keys.
        ClientConfigurationError: If the ``client`` section is invalid.
    """
    if not isinstance(config, dict):
        raise ConfigurationError(
            f"Configuration must be a JSON object, got {type(config).__name__}"
        )
    unknown_keys = set(config.keys()) - _ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        _LOGGER.error(f"Unknown top-level keys in configuration: {unknown_keys}")
        raise ConfigurationError(f"Unknown top-level keys in configuration: {unknown_keys}")

    if "client" in config:
        validate_client_config(config["client"])

    _LOGGER.info("Configuration validation passed.")
    return config
