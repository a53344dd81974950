"""Tests for the custom exception hierarchy."""

import pytest

from workitem_migrator.exceptions import (
    ConfigError,
    MigrationAbortedError,
    MigratorError,
    PermanentFaultError,
    ReconciliationError,
    RemoteServiceError,
    RetryExhaustedError,
    ValidationError,
)

EXCEPTION_CLASSES = [
    ConfigError,
    ValidationError,
    RemoteServiceError,
    PermanentFaultError,
    RetryExhaustedError,
    ReconciliationError,
    MigrationAbortedError,
]


class TestExceptionHierarchy:
    """Tests for exception types, inheritance, and message handling."""

    @pytest.mark.parametrize("exc_class", EXCEPTION_CLASSES)
    def test_each_exception_is_caught_by_migrator_error(self, exc_class):
        with pytest.raises(MigratorError):
            raise exc_class("caught by base")

    @pytest.mark.parametrize("exc_class", [MigratorError, *EXCEPTION_CLASSES])
    def test_str_returns_message(self, exc_class):
        msg = "check str output"
        assert str(exc_class(msg)) == msg

    def test_catching_migrator_error_does_not_catch_unrelated_exceptions(self):
        with pytest.raises(ValueError):
            try:
                raise ValueError("unrelated")
            except MigratorError:
                pytest.fail("MigratorError should not catch ValueError")


class TestRemoteServiceError:
    def test_defaults(self):
        exc = RemoteServiceError("boom")
        assert exc.status_code is None
        assert exc.error_code is None
        assert exc.body is None

    def test_carries_response_details(self):
        body = {"message": "TF400733: cancelled"}
        exc = RemoteServiceError("503", status_code=503, error_code="TF400733", body=body)
        assert exc.status_code == 503
        assert exc.error_code == "TF400733"
        assert exc.body is body
