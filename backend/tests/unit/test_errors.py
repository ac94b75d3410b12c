"""에러 분류 단위 테스트."""
import pytest

from app.core.errors import (
    NON_RETRYABLE_KINDS,
    ErrorCategory,
    ErrorKind,
    InvalidTaskStateError,
    TaskNotFoundError,
    VendorRejectedError,
    VendorTransientError,
    classify_error_message,
    is_retryable_kind,
)


class TestClassifyErrorMessage:
    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Prompt violates content policy", ErrorKind.CONTENT_POLICY),
            ("Inappropriate lyrics detected", ErrorKind.CONTENT_POLICY),
            ("HTTP 401: Unauthorized", ErrorKind.AUTH),
            ("Forbidden", ErrorKind.AUTH),
            ("Invalid prompt length", ErrorKind.VALIDATION),
            ("Validation failed for field style", ErrorKind.VALIDATION),
            ("Status polling timed out after 16 attempts (45 minutes)", ErrorKind.TIMEOUT),
            ("HTTP 503: Service Unavailable", ErrorKind.TRANSIENT),
            ("Connection reset by peer", ErrorKind.TRANSIENT),
            ("Something odd happened", ErrorKind.UNKNOWN),
        ],
    )
    def test_patterns(self, message, expected):
        assert classify_error_message(message) == expected

    def test_non_retryable_wins_over_timeout(self):
        assert classify_error_message("validation timeout") == ErrorKind.VALIDATION

    def test_default_for_empty(self):
        assert classify_error_message(None) == ErrorKind.UNKNOWN
        assert classify_error_message("", default=ErrorKind.VENDOR_FAILED) == ErrorKind.VENDOR_FAILED

    def test_retryable_kinds(self):
        assert NON_RETRYABLE_KINDS == {ErrorKind.VALIDATION, ErrorKind.AUTH, ErrorKind.CONTENT_POLICY}
        assert is_retryable_kind(ErrorKind.TIMEOUT)
        assert is_retryable_kind(ErrorKind.UNKNOWN)
        assert not is_retryable_kind(ErrorKind.CONTENT_POLICY)


class TestServiceErrors:
    def test_vendor_error_categories(self):
        transient = VendorTransientError("HTTP 502", operation="get_task_status", status_code=502)
        rejected = VendorRejectedError(
            "HTTP 422: bad style",
            operation="submit_generation",
            kind=ErrorKind.VALIDATION,
            status_code=422,
        )
        assert transient.category == ErrorCategory.TRANSIENT
        assert transient.kind == ErrorKind.TRANSIENT
        assert rejected.category == ErrorCategory.PERMANENT
        assert rejected.kind == ErrorKind.VALIDATION

    def test_to_dict(self):
        error = TaskNotFoundError("cid-1")
        data = error.to_dict()
        assert data["category"] == "permanent"
        assert data["correlation_id"] == "cid-1"
        assert "cid-1" in data["message"]

    def test_invalid_state_details(self):
        error = InvalidTaskStateError("cid-2", "completed", "retry")
        assert error.details["status"] == "completed"
        assert "completed" in error.message
