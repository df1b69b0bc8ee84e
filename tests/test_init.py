"""
Tests for logical_sessions.__init__ (package exports, version, logging).
"""

import logging


def test_imports_and_version():
    import logical_sessions as mod
    import logical_sessions._version as v

    assert isinstance(mod.__version__, str)
    assert mod.__version__ == v.__version__ == v.version
    assert v.__version_tuple__ == v.version_tuple
    assert "__version__" in mod.__all__


def test_public_exports():
    import logical_sessions as mod

    for name in ("SessionClient", "ClientSession", "SessionOptions", "CommandTransport"):
        assert name in mod.__all__
        assert hasattr(mod, name)


def test_logger_null_handler():
    import logical_sessions as mod

    logger = getattr(mod, "_LOGGER", None)
    assert logger is not None
    assert any(isinstance(h, logging.NullHandler) for h in logger.handlers)
