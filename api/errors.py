from __future__ import annotations
from typing import Any, Dict, List


class AppError(Exception):
    """Base for errors that map onto an HTTP response."""
    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class RateLimitExceeded(AppError):
    status_code = 429

    def __init__(self, operation: str, max_calls: int, window_seconds: float):
        super().__init__(
            f"Rate limit exceeded. Max {max_calls} {operation} requests per {window_seconds:g} seconds.",
            operation=operation,
        )


class ValidationFailed(AppError):
    status_code = 400

    def __init__(self, message: str, fields: List[str]):
        super().__init__(message, fields=list(fields))
        self.fields = list(fields)


class ConcurrencyConflict(AppError):
    status_code = 409

    def __init__(self, server_updated_at: str):
        super().__init__(
            "Conflict: config was modified since you last read it.",
            server_updated_at=server_updated_at,
        )
        self.server_updated_at = server_updated_at


class NotFound(AppError):
    status_code = 404


class Forbidden(AppError):
    status_code = 403


class UpstreamFailure(AppError):
    """The store failed. Retryable by the caller; never means 'not found'."""
    status_code = 503

    def __init__(self, message: str = "Storage unavailable, retry later"):
        super().__init__(message, retryable=True)


class LedgerWriteError(UpstreamFailure):
    def __init__(self, operation: str):
        super().__init__(f"Failed to record usage: {operation}")
        self.operation = operation
