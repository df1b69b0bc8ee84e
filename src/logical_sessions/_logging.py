"""
Logging setup for applications embedding the logical session subsystem.

The package itself only creates module loggers (``logging.getLogger(__name__)``) and attaches a
``NullHandler`` to the package logger. Applications and test harnesses that want to see session
lifecycle logs call `setup_logging()` once, early in process startup.
"""

import logging
import os
import sys

LOG_LEVEL_ENV_VAR = "PYTHONLOGLEVEL"
"""str: Environment variable holding the root log level (e.g. "DEBUG", "INFO")."""

_LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """
    Set up the root logger for the application.

    The level is taken from the ``level`` argument if given, otherwise from the PYTHONLOGLEVEL
    environment variable, and defaults to INFO. Output goes to stderr. Any existing root
    configuration is replaced so that this call takes effect even if a library configured
    logging first.

    Args:
        level (str | None): Explicit log level name. Overrides the environment variable.
    """
    logging.basicConfig(
        level=level or os.getenv(LOG_LEVEL_ENV_VAR, "INFO"),
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,  # Ensure we override any existing logging configuration
    )
