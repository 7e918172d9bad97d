from typing import Any, Optional


class APIError(Exception):
    """Failure reported by, or on the way to, the UtilitySign API."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        correlation_id: Optional[str] = None,
        retryable: bool = False,
        user_message: Optional[str] = None,
        validation_errors: Optional[list[str]] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.correlation_id = correlation_id
        self.retryable = retryable
        self.user_message = user_message
        self.validation_errors = validation_errors or []
        self.details = details or {}

    def __repr__(self) -> str:
        return f"APIError({self.message!r}, status_code={self.status_code}, retryable={self.retryable})"
