"""
Error taxonomy for the purchase approval workflow.

Every error carries the HTTP status it maps to and a stable ``error``
code so the transport layer can report failures without string matching.
Messages must never include one-time codes.
"""


class ApprovalWorkflowError(Exception):
    """Base class for all workflow failures reported to callers."""

    status_code = 500
    error = "workflow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.error}


class ValidationError(ApprovalWorkflowError):
    status_code = 400
    error = "validation_error"


class OtpMismatch(ValidationError):
    error = "otp_mismatch"


class NotFound(ApprovalWorkflowError):
    status_code = 404
    error = "not_found"


class Forbidden(ApprovalWorkflowError):
    status_code = 403
    error = "forbidden"


class InvalidStateTransition(ApprovalWorkflowError):
    status_code = 400
    error = "invalid_state_transition"


class AlreadyProcessed(InvalidStateTransition):
    error = "already_processed"


class OtpExpired(InvalidStateTransition):
    error = "otp_expired"


class OtpNotIssued(InvalidStateTransition):
    error = "otp_not_issued"


class OtpAttemptsExceeded(InvalidStateTransition):
    error = "otp_attempts_exceeded"


class RequestClosed(InvalidStateTransition):
    error = "request_closed"


class ConcurrentUpdate(InvalidStateTransition):
    status_code = 409
    error = "concurrent_update"


class StorageError(ApprovalWorkflowError):
    status_code = 500
    error = "storage_error"


class ConditionalCheckFailed(StorageError):
    """Raised by stores when a conditional write's preconditions no longer hold."""

    error = "conditional_check_failed"
