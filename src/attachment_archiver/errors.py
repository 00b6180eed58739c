"""Error taxonomy shared across the pipeline."""

from __future__ import annotations

import re

# Gmail answers 403 (not 429) for per-user quota exhaustion.
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})

_REDACTIONS = (
    (re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE), "Bearer [REDACTED]"),
    (
        re.compile(r"(access_token|refresh_token|client_secret)['\":=\s]+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE),
        r"\1: [REDACTED]",
    ),
    (re.compile(r"/home/[^/\s]+"), "/home/[USER]"),
    (re.compile(r"/Users/[^/\s]+"), "/Users/[USER]"),
)


class ArchiverError(Exception):
    """Base class; ``fatal`` errors abort the whole batch."""

    fatal = False


class AuthError(ArchiverError):
    """No usable credential, or consent is missing. Needs operator action."""

    fatal = True


class TokenRefreshError(AuthError):
    """The token endpoint rejected a refresh."""

    def __init__(self, message: str, *, requires_reauthorization: bool = False) -> None:
        super().__init__(message)
        self.requires_reauthorization = requires_reauthorization


class TransportError(ArchiverError):
    """Network or API failure, classified by status code."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        reason: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        if retryable is None:
            retryable = is_retryable_status(status_code, reason)
        self.retryable = retryable


class ValidationError(ArchiverError):
    """Message-level data problem (missing header, unparseable date)."""


class StorageError(ArchiverError):
    """Ledger/persistence failure."""

    def __init__(self, message: str, *, operation: str, key: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.key = key


class ConfigurationError(ArchiverError):
    """Settings could not be loaded."""

    fatal = True


def is_retryable_status(status_code: int | None, reason: str | None = None) -> bool:
    """Network failures (no status), 5xx, 429 and 401 are worth another attempt."""
    if status_code is None:
        return True
    if status_code >= 500 or status_code in (401, 429):
        return True
    if status_code == 403 and reason in RATE_LIMIT_REASONS:
        return True
    return False


def sanitize_error_message(message: str | None) -> str:
    """Strip credentials and user paths before anything is persisted."""
    if not message:
        return "Unknown error"
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message
