import pytest

from logical_sessions._exceptions import (
    ClientClosedError,
    ClientConfigurationError,
    ConfigurationError,
    FatalAllocationError,
    InternalError,
    NetworkError,
    OperationFailure,
    SessionEndedError,
    SessionInUseError,
    SessionsError,
    ShutdownDispatchError,
    UsageError,
)


class TestBaseExceptions:
    """Tests for base exceptions."""

    def test_sessions_error(self):
        """Test that SessionsError can be raised and caught properly."""
        with pytest.raises(SessionsError) as exc_info:
            raise SessionsError("base error")
        assert str(exc_info.value) == "base error"

    def test_internal_error_inheritance(self):
        """Test that InternalError can be caught as SessionsError or RuntimeError."""
        with pytest.raises(SessionsError):
            raise InternalError("broken invariant")
        with pytest.raises(RuntimeError):
            raise InternalError("broken invariant")


class TestExceptionParameterized:
    """Parameterized tests for common exception behaviors."""

    @pytest.mark.parametrize(
        "exception_class,parent_classes",
        [
            (UsageError, [SessionsError]),
            (SessionEndedError, [UsageError, SessionsError]),
            (SessionInUseError, [UsageError, SessionsError]),
            (ClientClosedError, [UsageError, SessionsError]),
            (FatalAllocationError, [SessionsError]),
            (NetworkError, [SessionsError, ConnectionError]),
            (ShutdownDispatchError, [SessionsError]),
            (ConfigurationError, [SessionsError]),
            (ClientConfigurationError, [ConfigurationError, SessionsError]),
        ],
    )
    def test_exception_hierarchy(self, exception_class, parent_classes):
        error = exception_class("message")
        for parent in parent_classes:
            assert isinstance(error, parent)
        assert str(error) == "message"


def test_usage_errors_have_default_messages():
    assert "session already ended" in str(SessionEndedError())
    assert "in use by another operation" in str(SessionInUseError())
    assert "closed" in str(ClientClosedError())


def test_operation_failure_details():
    failure = OperationFailure("boom", code=11600, details={"ok": 0, "operationTime": 1})
    assert failure.code == 11600
    assert failure.details["operationTime"] == 1
    assert OperationFailure("no details").details == {}
