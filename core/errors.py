"""
Error types raised by the message services and mapped to HTTP responses in app.errors.
"""

from typing import Optional


class ValidationIssue(ValueError):
    """Rejected client input; `field` names the offending wire field."""

    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.data = data


class NotFound(ValidationIssue):
    def __init__(self, message: str, field: str = "id", data: dict | None = None):
        super().__init__(message, field=field, error_type="not_found", data=data)


class EmbeddingProviderError(RuntimeError):
    """The embedding provider failed or returned a malformed response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
