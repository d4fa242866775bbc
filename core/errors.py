"""Error taxonomy shared by every orchestration component.

Each error carries a machine-readable ``code`` and serialises to the same
``{status, message, errors}`` shape the platform API uses, so the HTTP layer can
return it unchanged.
"""

from typing import Any, Dict, List, Optional


class PlatformError(Exception):
    """Base exception for integration and compliance errors."""

    code = "platform_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": "error", "code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


# =============================================================================
# Validation
# =============================================================================

class ValidationError(PlatformError):
    """Field-keyed validation failure.

    Nested fields use dotted keys, e.g. ``api_credentials.password`` or
    ``server_details.pool_alias``. Non-fatal and resubmittable.
    """

    code = "validation_error"

    def __init__(self, field_errors: Dict[str, str], message: str = "Validation failed"):
        super().__init__(message)
        self.field_errors = dict(field_errors)

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls({field: message}, message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = {field: [msg] for field, msg in self.field_errors.items()}
        return data

    def __str__(self) -> str:
        parts = ", ".join(f"{k}: {v}" for k, v in self.field_errors.items())
        return f"{self.message} ({parts})" if parts else self.message


class ProfileValidationError(ValidationError):
    """Connection profile failed validation for its ERP type."""

    code = "profile_validation_error"


# =============================================================================
# Connection / Sync
# =============================================================================

class ConnectionTestError(PlatformError):
    """A connection test failed. Tagged with the path that was attempted."""

    code = "connection_test_failed"

    def __init__(self, path: str, message: str):
        super().__init__(message, {"path_tested": path})
        self.path = path


class JobError(PlatformError):
    """A sync job reached the failed state.

    The server's message is surfaced verbatim and the job is never retried
    automatically.
    """

    code = "sync_job_failed"

    def __init__(self, job_id: str, error_message: Optional[str]):
        message = error_message or "Sync job failed"
        super().__init__(message, {"job_id": job_id})
        self.job_id = job_id
        self.error_message = error_message


class PendingJobsError(PlatformError):
    """Profile cannot be deleted while it has non-terminal sync jobs."""

    code = "pending_jobs"

    def __init__(self, profile_id: str, pending_jobs_count: int):
        super().__init__(
            f"Profile {profile_id} has {pending_jobs_count} pending sync job(s)",
            {"profile_id": profile_id, "pending_jobs_count": pending_jobs_count},
        )
        self.profile_id = profile_id
        self.pending_jobs_count = pending_jobs_count


# =============================================================================
# Compliance
# =============================================================================

class ComplianceError(PlatformError):
    """Invoice failed compliance validation.

    The full report stays on ``report``; ``summary()`` truncates it for
    transient notifications.
    """

    code = "compliance_error"

    def __init__(self, report: Any, message: str = "Invoice failed FIRS validation"):
        super().__init__(message)
        self.report = report

    @property
    def errors(self) -> List[str]:
        return list(self.report.errors)

    def summary(self, limit: int = 3) -> str:
        shown = self.report.errors[:limit]
        text = "; ".join(shown) if shown else self.message
        hidden = len(self.report.errors) - len(shown)
        if hidden > 0:
            text += f" (+{hidden} more)"
        return text

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["data"] = self.report.model_dump()
        return data


class ComplianceGuardError(PlatformError):
    """A transition was refused by a client-side guard. No request was sent."""

    code = "compliance_guard"

    def __init__(self, operation: str, reason: str, firs_status: Optional[str] = None):
        super().__init__(
            f"Cannot {operation}: {reason}",
            {"operation": operation, "firs_status": firs_status},
        )
        self.operation = operation
        self.reason = reason


class StateRegressionError(PlatformError):
    """The regulator reported a status that would move an invoice backwards."""

    code = "state_regression"

    def __init__(self, invoice_id: str, current: str, reported: str):
        super().__init__(
            f"Refusing to move invoice {invoice_id} from {current} to {reported}",
            {"invoice_id": invoice_id, "current": current, "reported": reported},
        )


# =============================================================================
# Providers / Auth / Concurrency
# =============================================================================

class ProviderStateError(PlatformError):
    """Active access-point provider state is not what the operation requires."""

    code = "provider_state"


class PermissionDenied(PlatformError):
    """Caller lacks the permission required for an operation."""

    code = "permission_denied"

    def __init__(self, message: str = "You do not have permission to perform this action",
                 permission: Optional[str] = None):
        super().__init__(message, {"permission": permission} if permission else None)
        self.permission = permission


class DuplicateSubmissionError(PlatformError):
    """A mutation for the same target is already outstanding."""

    code = "duplicate_submission"

    def __init__(self, target: str):
        super().__init__(f"An operation on {target} is already in progress", {"target": target})
        self.target = target


# =============================================================================
# Backend transport
# =============================================================================

class BackendError(PlatformError):
    """Platform API returned an error response."""

    code = "backend_error"

    def __init__(self, message: str, status_code: Optional[int] = None,
                 response_body: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"status_code": status_code} if status_code else None)
        self.status_code = status_code
        self.response_body = response_body or {}


class BackendTimeoutError(BackendError):
    """Request to the platform API timed out."""

    code = "timeout"

    def __init__(self, message: str = "Request timed out. Please try again."):
        super().__init__(message, status_code=408)


class NotFoundError(BackendError):
    """Requested resource does not exist."""

    code = "not_found"

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


def extract_error_message(error: Any, fallback: str = "An unexpected error occurred") -> str:
    """Best human-readable message for an arbitrary error object."""
    if isinstance(error, ValidationError) and error.field_errors:
        return next(iter(error.field_errors.values()))
    if isinstance(error, PlatformError):
        return error.message or fallback
    if isinstance(error, dict):
        errors = error.get("errors")
        if isinstance(errors, dict):
            for messages in errors.values():
                if isinstance(messages, list) and messages:
                    return str(messages[0])
                if isinstance(messages, str):
                    return messages
        message = error.get("message")
        if message:
            return str(message)
        return fallback
    if isinstance(error, str):
        return error or fallback
    if isinstance(error, Exception) and str(error):
        return str(error)
    return fallback
