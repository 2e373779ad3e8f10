"""
Error taxonomy for tasksync.

Transient remote failures carry ``retryable=True`` so the offline queue and the
remote client's retry layer can decide whether to try again. Configuration
errors are fatal and raised at initialization. Validation errors are rejected
immediately and never retried.
"""

from typing import Optional


class TaskSyncError(Exception):
    """Base exception for tasksync"""
    pass


class ConfigurationError(TaskSyncError):
    """Integration disabled, credentials missing or settings invalid"""
    pass


class ValidationError(TaskSyncError):
    """Malformed input (webhook payload, change type, status value)"""
    pass


class RemoteError(TaskSyncError):
    """Failure reported by, or while talking to, the remote service"""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteConnectionError(RemoteError):
    """Network failure, timeout or 5xx response"""

    retryable = True


class RateLimitError(RemoteConnectionError):
    """Remote API rejected the call with HTTP 429"""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class RemoteAuthError(RemoteError):
    """Remote API rejected the credentials (401/403)"""
    pass


class RemoteRequestError(RemoteError):
    """Remote API rejected the request itself (4xx, GraphQL errors)"""
    pass


class RemoteNotFoundError(RemoteRequestError):
    """Requested remote item does not exist"""
    pass


__all__ = [
    "TaskSyncError",
    "ConfigurationError",
    "ValidationError",
    "RemoteError",
    "RemoteConnectionError",
    "RateLimitError",
    "RemoteAuthError",
    "RemoteRequestError",
    "RemoteNotFoundError",
]
