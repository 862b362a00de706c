"""
Error types for the timeline sync engine.

This module defines the exception taxonomy surfaced by the engine:
- TimelineError: Base exception
- AuthError: Identity could not be established (terminal for the session)
- SubscriptionError: Top-level or nested read failed
- ValidationError: Caller input failed a precondition (no network call made)
- MutationError: A write exhausted its retry attempts

Invariants:
    - All errors inherit from TimelineError
    - Errors include context for debugging
    - The underlying failure is always chained, never replaced
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TimelineError(Exception):
    """Base exception for all timeline sync errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TIMELINE_ERROR"
        self.details = details or {}


class AuthError(TimelineError):
    """Identity could not be established.

    Raised when:
    - Token or anonymous sign-in exhausted its retries
    - A mutation is attempted while no identity is active
    """

    def __init__(
        self,
        message: str,
        code: str = "AUTH_ERROR",
        method: Optional[str] = None,
    ) -> None:
        super().__init__(message, code=code, details={"method": method})
        self.method = method


class SubscriptionError(TimelineError):
    """A live subscription or nested read failed.

    Surfaced through SyncState.error; the subscription is not
    re-established automatically.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="SUBSCRIPTION_ERROR",
            details={"path": path},
        )
        self.path = path


class ValidationError(TimelineError):
    """Caller input failed a precondition.

    Raised when:
    - Title is empty
    - Asset bytes are missing
    - Identifier is malformed
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name},
        )
        self.field_name = field_name


class MutationError(TimelineError):
    """A remote write exhausted its retry attempts.

    Local state is left unchanged since no optimistic update is applied.

    Attributes:
        operation: The step that failed (e.g. "asset.upload")
        cause: The last underlying exception
    """

    def __init__(
        self,
        message: str,
        operation: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            code="MUTATION_ERROR",
            details={
                "operation": operation,
                "cause": repr(cause) if cause is not None else None,
            },
        )
        self.operation = operation
        self.cause = cause
