"""Error taxonomy and classification for sync operations.

Every failure that crosses a component boundary is turned into a
SyncError carrying one of the ErrorType categories. The category decides
whether the failure is retried:

- CONFIG / VALIDATION: deterministic, never retried
- AUTH / PARSE: deterministic remote answers, never retried
- NETWORK / TIMEOUT / API: transient, retried by the retry policy
- DATABASE: handled by the store (repair-then-retry for missing tables)
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx


class ErrorType(str, Enum):
    """Failure category assigned to every sync error."""

    NETWORK = "network"
    AUTH = "auth"
    TIMEOUT = "timeout"
    PARSE = "parse"
    API = "api"
    DATABASE = "database"
    CONFIG = "config"
    VALIDATION = "validation"


RETRYABLE_TYPES = frozenset({ErrorType.NETWORK, ErrorType.TIMEOUT, ErrorType.API})


class SyncError(Exception):
    """Base exception for all classified failures."""

    error_type: ErrorType = ErrorType.API

    def __init__(
        self,
        message: str,
        *,
        context: str | None = None,
        details: dict[str, Any] | None = None,
        error_type: ErrorType | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context
        self.details: dict[str, Any] = dict(details or {})
        self.timestamp = datetime.now(UTC)
        if error_type is not None:
            self.error_type = error_type

    @property
    def retryable(self) -> bool:
        """Whether the retry policy may attempt the operation again."""
        return self.error_type in RETRYABLE_TYPES

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.error_type.value,
            "message": self.message,
            "context": self.context,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        if self.context:
            return f"[{self.context}] {self.message}"
        return self.message


class NetworkError(SyncError):
    """Raised when the remote host cannot be reached."""

    error_type = ErrorType.NETWORK


class AuthError(SyncError):
    """Raised when the remote API rejects the credentials (401/403)."""

    error_type = ErrorType.AUTH


class RequestTimeoutError(SyncError):
    """Raised when a call does not complete within its timeout."""

    error_type = ErrorType.TIMEOUT


class ParseError(SyncError):
    """Raised when a response body cannot be decoded."""

    error_type = ErrorType.PARSE


class ApiError(SyncError):
    """Raised when the remote API reports an error payload."""

    error_type = ErrorType.API

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        context: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=context, details=details)
        self.status_code = status_code
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


class CircuitOpenError(ApiError):
    """Raised without any network call while a circuit breaker is open."""

    @property
    def retryable(self) -> bool:
        return False


class DatabaseError(SyncError):
    """Raised when the local store fails."""

    error_type = ErrorType.DATABASE


class ConfigError(SyncError):
    """Raised when required configuration is missing or malformed."""

    error_type = ErrorType.CONFIG

    def __init__(
        self,
        message: str,
        *,
        problems: list[str] | None = None,
        context: str | None = None,
    ) -> None:
        super().__init__(message, context=context, details={"problems": problems or []})
        self.problems = list(problems or [])


class ValidationError(SyncError):
    """Raised when input or remote data violates an expected shape or limit."""

    error_type = ErrorType.VALIDATION


class RetryExhaustedError(SyncError):
    """Raised when every retry attempt failed.

    Keeps the category of the last failure so callers can still branch on
    the error type, but is itself never retried again.
    """

    def __init__(self, last_error: SyncError, attempts: int, *, context: str | None = None) -> None:
        super().__init__(
            f"{last_error.message} (after {attempts} attempts)",
            context=context or last_error.context,
            details={**last_error.details, "attempts": attempts},
            error_type=last_error.error_type,
        )
        self.last_error = last_error
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return False


_ERROR_CLASSES: dict[ErrorType, type[SyncError]] = {
    ErrorType.NETWORK: NetworkError,
    ErrorType.AUTH: AuthError,
    ErrorType.TIMEOUT: RequestTimeoutError,
    ErrorType.PARSE: ParseError,
    ErrorType.API: ApiError,
    ErrorType.DATABASE: DatabaseError,
    ErrorType.VALIDATION: ValidationError,
}

# Checked in order, first match wins
_MESSAGE_RULES: tuple[tuple[ErrorType, tuple[str, ...]], ...] = (
    (ErrorType.TIMEOUT, ("timeout", "timed out")),
    (ErrorType.AUTH, ("unauthorized", "401", "authentication")),
    (ErrorType.NETWORK, ("network", "connection", "host")),
    (ErrorType.PARSE, ("json", "parse", "decode")),
)


def classify_error_message(message: str | None) -> ErrorType:
    """Classify a failure message by case-insensitive substring markers.

    Args:
        message: Raw failure message

    Returns:
        Matching ErrorType, API when nothing matches
    """
    text = (message or "").lower()
    for error_type, markers in _MESSAGE_RULES:
        if any(marker in text for marker in markers):
            return error_type
    return ErrorType.API


def make_error(
    error_type: ErrorType,
    message: str,
    *,
    context: str | None = None,
    details: dict[str, Any] | None = None,
) -> SyncError:
    """Build the SyncError subclass matching an error type."""
    if error_type is ErrorType.CONFIG:
        error: SyncError = ConfigError(message, context=context)
        error.details.update(details or {})
        return error
    cls = _ERROR_CLASSES.get(error_type, SyncError)
    return cls(message, context=context, details=details)


def classify_exception(exc: BaseException, *, context: str | None = None) -> SyncError:
    """Turn any exception into a classified SyncError.

    SyncErrors are returned unchanged (context filled in when missing).
    """
    if isinstance(exc, SyncError):
        if exc.context is None and context:
            exc.context = context
        return exc
    if isinstance(exc, httpx.TimeoutException | asyncio.TimeoutError | TimeoutError):
        return RequestTimeoutError(str(exc) or "Request timed out", context=context)
    if isinstance(exc, httpx.TransportError):
        return NetworkError(str(exc) or "Network error", context=context)
    if isinstance(exc, json.JSONDecodeError):
        return ParseError(f"Failed to decode JSON: {exc}", context=context)
    message = str(exc) or type(exc).__name__
    return make_error(classify_error_message(message), message, context=context)


# -----------------------------------------------------------------------------
# Database error classification
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseErrorInfo:
    """How the store should react to a database failure."""

    kind: str
    recoverable: bool
    requires_repair: bool = False
    retry_delay_ms: int | None = None


def classify_db_error(message: str | None) -> DatabaseErrorInfo:
    """Classify a database failure message.

    Args:
        message: Driver error message

    Returns:
        DatabaseErrorInfo describing whether to retry, repair or give up
    """
    text = (message or "").lower()
    if "database is locked" in text:
        return DatabaseErrorInfo(kind="locked", recoverable=True, retry_delay_ms=500)
    if "no such table" in text:
        return DatabaseErrorInfo(kind="missing_table", recoverable=True, requires_repair=True)
    if "disk full" in text or "no space" in text:
        return DatabaseErrorInfo(kind="disk_full", recoverable=False)
    if "permission denied" in text or "readonly" in text:
        return DatabaseErrorInfo(kind="permission", recoverable=False)
    if "constraint failed" in text:
        return DatabaseErrorInfo(kind="constraint", recoverable=False)
    return DatabaseErrorInfo(kind="unknown", recoverable=True)
