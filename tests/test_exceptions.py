"""
Tests for the exception hierarchy and its HTTP mapping.
"""

from datetime import date

import pytest
from fastapi import status

from quota_bridge.api.dependencies import to_http_exception
from quota_bridge.exceptions import (
    AboveThresholdError,
    AlreadyClaimedTodayError,
    AuthenticationError,
    DirectoryNotConfiguredError,
    ExternalRejectionError,
    ExternalTransportError,
    InvalidUsernameError,
    NoFailedKeysError,
    NotBoundError,
    NotFoundError,
    NoValidKeysError,
    OwnershipMismatchError,
    PushNotConfiguredError,
    QuotaBridgeError,
    RecordNotFoundError,
    UserNotFoundError,
)
from quota_bridge.models.domain import ValidationReport


class TestExceptionAttributes:
    def test_not_found_family(self):
        assert isinstance(UserNotFoundError("bob"), NotFoundError)
        assert isinstance(RecordNotFoundError("donation", "x/1"), NotFoundError)
        assert isinstance(UserNotFoundError("bob"), QuotaBridgeError)

    def test_ownership_mismatch_message(self):
        exc = OwnershipMismatchError("alice", "10086", "")
        assert exc.expected_auth_id == "10086"
        assert "<unlinked>" in str(exc)

    def test_no_valid_keys_carries_report(self):
        report = ValidationReport(submitted_count=1, dead=["sk-x"])
        exc = NoValidKeysError(report)
        assert exc.report is report
        assert "sk-x" not in str(exc)

    def test_external_errors_keep_message(self):
        assert ExternalRejectionError("gateway", "user disabled").message == "user disabled"
        assert ExternalTransportError("pool", "timed out").service == "pool"


@pytest.mark.parametrize(
    "exc, expected",
    [
        (UserNotFoundError("bob"), status.HTTP_404_NOT_FOUND),
        (RecordNotFoundError("donation", "x/1"), status.HTTP_404_NOT_FOUND),
        (InvalidUsernameError(" "), status.HTTP_400_BAD_REQUEST),
        (NoValidKeysError(ValidationReport()), status.HTTP_400_BAD_REQUEST),
        (OwnershipMismatchError("alice", "1", "2"), status.HTTP_403_FORBIDDEN),
        (NotBoundError("1"), status.HTTP_409_CONFLICT),
        (AlreadyClaimedTodayError("1", date(2026, 1, 1)), status.HTTP_409_CONFLICT),
        (AboveThresholdError(10, 5), status.HTTP_409_CONFLICT),
        (NoFailedKeysError(1), status.HTTP_409_CONFLICT),
        (PushNotConfiguredError(), status.HTTP_503_SERVICE_UNAVAILABLE),
        (DirectoryNotConfiguredError(), status.HTTP_503_SERVICE_UNAVAILABLE),
        (ExternalRejectionError("gateway", "no"), status.HTTP_502_BAD_GATEWAY),
        (ExternalTransportError("gateway", "timeout"), status.HTTP_504_GATEWAY_TIMEOUT),
        (AuthenticationError("bad"), status.HTTP_401_UNAUTHORIZED),
    ],
)
def test_http_status_mapping(exc, expected):
    assert to_http_exception(exc, "test").status_code == expected


def test_rejection_message_is_passed_through():
    http_exc = to_http_exception(ExternalRejectionError("gateway", "余额不足"), "test")
    assert http_exc.detail == "余额不足"
