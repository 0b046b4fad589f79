"""Map transport and protocol failures onto the engine's error taxonomy.

Vendor specific server replies are matched against ``ERROR_PATTERNS``, an
ordered table: the first matching row wins. Timeouts are decided before the
table is consulted, and anything left unmatched is a transport failure.
"""

from __future__ import annotations

import asyncio
import imaplib
import re
import socket
import ssl
from dataclasses import dataclass

from ..core.models import ClassifiedError, ErrorCategory
from ..transport.imap_client import describe_error

APP_PASSWORD_HINT = (
    "Basic authentication is blocked for this account: generate an app "
    "password or sign in with OAuth"
)
ENABLE_IMAP_HINT = "Enable IMAP access in your account settings, then retry"
CHECK_CREDENTIALS_HINT = "Check the email address and password or app password"


@dataclass(frozen=True, slots=True)
class ErrorPattern:
    """One row of the classification table."""

    category: ErrorCategory
    pattern: re.Pattern[str]
    hint: str | None = None


ERROR_PATTERNS: tuple[ErrorPattern, ...] = (
    ErrorPattern(
        ErrorCategory.AUTH_BLOCKED,
        re.compile(r"BasicAuthBlocked", re.IGNORECASE),
        APP_PASSWORD_HINT,
    ),
    ErrorPattern(
        ErrorCategory.AUTH_BLOCKED,
        re.compile(
            r"application-specific password required|WEBALERT|web login required",
            re.IGNORECASE,
        ),
        APP_PASSWORD_HINT,
    ),
    ErrorPattern(
        ErrorCategory.PROTOCOL_DISABLED,
        re.compile(
            r"not enabled for IMAP|IMAP (access )?(is )?disabled"
            r"|IMAP use is disabled|\[UNAVAILABLE\]",
            re.IGNORECASE,
        ),
        ENABLE_IMAP_HINT,
    ),
    ErrorPattern(
        ErrorCategory.AUTH_FAILED,
        re.compile(r"LogonDenied|AuthFailed", re.IGNORECASE),
        CHECK_CREDENTIALS_HINT,
    ),
    ErrorPattern(
        ErrorCategory.AUTH_FAILED,
        re.compile(
            r"AUTHENTICATIONFAILED|invalid credentials|AUTHORIZATIONFAILED",
            re.IGNORECASE,
        ),
        CHECK_CREDENTIALS_HINT,
    ),
    ErrorPattern(
        ErrorCategory.PROTOCOL_DISABLED,
        re.compile(r"^\s*(?:b['\"])?LOGIN failed\.?['\"]?\s*$", re.IGNORECASE),
        ENABLE_IMAP_HINT,
    ),
)

DEFAULT_HINTS: dict[ErrorCategory, str] = {
    ErrorCategory.AUTH_BLOCKED: APP_PASSWORD_HINT,
    ErrorCategory.AUTH_FAILED: CHECK_CREDENTIALS_HINT,
    ErrorCategory.PROTOCOL_DISABLED: ENABLE_IMAP_HINT,
    ErrorCategory.TIMEOUT: "The server did not respond in time; try again later",
    ErrorCategory.TRANSPORT: "Check your network connection and server settings",
    ErrorCategory.PARSE_PARTIAL: "Some messages could not be read",
}

_TIMEOUT_TYPES: tuple[type[BaseException], ...] = (
    TimeoutError,
    socket.timeout,
    asyncio.TimeoutError,
)


def default_hint(category: ErrorCategory) -> str:
    """Return generic remediation text for a category."""
    return DEFAULT_HINTS[category]


class ErrorClassifier:
    """Classify exceptions and server replies into :class:`ClassifiedError`."""

    def __init__(self, patterns: tuple[ErrorPattern, ...] = ERROR_PATTERNS) -> None:
        """Initialise with an ordered pattern table."""
        self._patterns = patterns

    def classify(
        self, exc: BaseException, *, timed_out: bool = False
    ) -> ClassifiedError:
        """Classify an exception raised by a session stage."""
        message = describe_error(exc)
        if timed_out or isinstance(exc, _TIMEOUT_TYPES):
            return ClassifiedError(
                category=ErrorCategory.TIMEOUT,
                original_message=message or "Operation timed out",
            )
        matched = self._match(message)
        if matched is not None:
            return matched
        hint = None
        if isinstance(exc, ssl.SSLError):
            hint = "The TLS handshake failed; verify the server host and port"
        elif isinstance(exc, imaplib.IMAP4.abort):
            hint = "The server closed the connection unexpectedly"
        return ClassifiedError(
            category=ErrorCategory.TRANSPORT,
            original_message=message,
            remediation_hint=hint,
        )

    def classify_text(self, message: str) -> ClassifiedError:
        """Classify a raw server reply."""
        matched = self._match(message)
        if matched is not None:
            return matched
        return ClassifiedError(
            category=ErrorCategory.TRANSPORT, original_message=message
        )

    def _match(self, message: str) -> ClassifiedError | None:
        for row in self._patterns:
            if row.pattern.search(message):
                return ClassifiedError(
                    category=row.category,
                    original_message=message,
                    remediation_hint=row.hint,
                )
        return None


__all__ = [
    "DEFAULT_HINTS",
    "ERROR_PATTERNS",
    "ErrorClassifier",
    "ErrorPattern",
    "default_hint",
]
