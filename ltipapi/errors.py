"""LTIP API ERRORS"""


class Error(Exception):
    def __init__(self, message):
        self.message = message
        super().__init__(message)

    @property
    def serialize(self):
        return {"message": self.message}


class CsrfError(Error):
    """Raised when the CSRF token store cannot be read or written."""

    pass


class LockoutServiceError(Error):
    """Raised when the lockout cache cannot complete an operation.

    Callers must treat this as a hard authentication failure. An unreachable
    cache never means "not locked".
    """

    def __init__(self, operation: str, cause: Exception | None = None):
        super().__init__(f"Lockout service unavailable during {operation}")
        self.operation = operation
        self.cause = cause

    @property
    def serialize(self):
        return {
            "message": self.message,
            "error_code": "service_unavailable",
            "operation": self.operation,
        }


class OAuthStateError(Error):
    """Raised when the OAuth state store cannot be read or written."""

    pass
