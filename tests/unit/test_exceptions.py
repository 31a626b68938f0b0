"""Tests for the domain exception taxonomy."""

from shared.domain.exceptions import ConflictError, DomainException, ErrorCode, InvariantViolationError


class TestDomainExceptions:
    """Tests for status codes and the response shape."""

    def test_invariant_violation_is_a_server_error(self):
        error = InvariantViolationError("prior_attempts cannot be negative", context={"prior_attempts": -1})

        assert isinstance(error, DomainException)
        assert error.status_code == 500
        assert error.error_code == ErrorCode.INVARIANT_VIOLATION
        assert error.to_dict() == {
            "error": "INVARIANT_VIOLATION",
            "message": "prior_attempts cannot be negative",
            "type": "InvariantViolationError",
            "context": {"prior_attempts": -1},
        }

    def test_conflict_response_carries_reason(self):
        error = ConflictError("Already enrolled")

        assert error.status_code == 409
        assert error.to_dict()["message"] == "Already enrolled"
