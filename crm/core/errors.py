"""
Error Taxonomy
==============
Domain errors raised by the services. Each carries the HTTP status and the
machine-readable code the API renders for it.
"""

from typing import Optional


class CRMError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code}


# ── Client errors ─────────────────────────────────────────────────────────────

class ValidationError(CRMError):
    status_code = 400
    code = "VALIDATION_ERROR"


class MissingValue(ValidationError):
    code = "MISSING_VALUE"


class AuthError(CRMError):
    status_code = 401
    code = "UNAUTHORIZED"


class ForbiddenError(CRMError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(CRMError):
    status_code = 404
    code = "NOT_FOUND"


class ContactNotFound(NotFoundError):
    code = "CONTACT_NOT_FOUND"

    def __init__(self, message: str = "Contact not found", **kwargs):
        super().__init__(message, **kwargs)


class SessionNotFound(NotFoundError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, message: str = "Session not found", **kwargs):
        super().__init__(message, **kwargs)


class InvalidToken(NotFoundError):
    code = "INVALID_TOKEN"

    def __init__(self, message: str = "Invalid tracking token", **kwargs):
        super().__init__(message, **kwargs)


class StateConflictError(CRMError):
    status_code = 400
    code = "INVALID_STATE"


class InvalidTransition(StateConflictError):
    code = "INVALID_TRANSITION"


class LimitExceededError(CRMError):
    status_code = 400
    code = "LIMIT_EXCEEDED"


class SessionLimitExceeded(LimitExceededError):
    code = "SESSION_LIMIT_EXCEEDED"


# ── External services ─────────────────────────────────────────────────────────

class ExternalServiceError(CRMError):
    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"


class EmailNotConnected(ExternalServiceError):
    status_code = 403
    code = "EMAIL_NOT_CONNECTED"

    def __init__(self, message: str = "Please connect your Gmail account to send emails", **kwargs):
        super().__init__(message, **kwargs)


class SendFailed(ExternalServiceError):
    code = "SEND_FAILED"
