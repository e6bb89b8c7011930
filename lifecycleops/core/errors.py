from __future__ import annotations

from typing import Any


class LifecycleError(Exception):
    """Base error for lifecycleops."""


class CryptoError(LifecycleError):
    """Encryption key unavailable/malformed, or ciphertext failed authentication."""


class SessionNotFound(LifecycleError):
    """Session identifier is unknown or has been revoked."""


class SessionExpired(LifecycleError):
    """Session outlived its TTL; callers must reconfigure credentials."""


class TenantDisabled(LifecycleError):
    """Tenant was soft-disabled; its sessions are no longer admitted."""


class TokenAcquisitionError(LifecycleError):
    """Client-credentials exchange failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DirectoryApiError(LifecycleError):
    """Directory API call failed after the retry policy was applied."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: Any = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.attempts = attempts

    @property
    def error_code(self) -> str | None:
        # Graph-style error payloads carry {"error": {"code": ..., "message": ...}}.
        if isinstance(self.body, dict):
            error = self.body.get("error")
            if isinstance(error, dict) and error.get("code"):
                return str(error["code"])
        return None


class ThrottledError(DirectoryApiError):
    """HTTP 429 persisted past the retry budget."""


class UpstreamUnavailable(DirectoryApiError):
    """Transient 5xx or network failure persisted past the retry budget."""


class Unauthorized(DirectoryApiError):
    """HTTP 401 after the single forced token refresh."""


class ClientError(DirectoryApiError):
    """Non-retryable 4xx response."""


class OperationCancelled(LifecycleError):
    """Cancellation or deadline signalled while waiting."""


class InvalidActionPlan(LifecycleError):
    """Action list is empty, has duplicate ordinals, or names unknown actions."""


class RunNotFound(LifecycleError):
    """Run does not exist within the caller's tenant."""


class RunSealedError(LifecycleError):
    """Sealed runs are immutable."""


class ScheduleNotFound(LifecycleError):
    """Schedule does not exist within the caller's tenant."""


class ScheduleStateError(LifecycleError):
    """Schedule transition is not allowed from its current status."""


class DatabaseError(LifecycleError):
    """Database layer failure."""
