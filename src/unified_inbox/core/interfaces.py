"""Protocol interfaces and shared exceptions for decoupling components."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from .models import (
    ClassifiedError,
    Credential,
    ErrorCategory,
    FetchedMessage,
    FetchRequest,
    NormalizedEmail,
)


class MailEngineError(RuntimeError):
    """Base error raised across the engine boundary."""

    def __init__(self, message: str, error: ClassifiedError | None = None) -> None:
        super().__init__(message)
        self.error = error

    @property
    def category(self) -> ErrorCategory | None:
        """Category of the attached classified error, if any."""
        return self.error.category if self.error is not None else None


class FetchError(MailEngineError):
    """Raised when a whole fetch batch fails."""


class SessionStateError(MailEngineError):
    """Raised when an operation is not legal in the current session state."""


class MailTransport(Protocol):
    """Blocking IMAP command channel driven by a session."""

    def open(self, timeout: float) -> None:
        """Open the connection and wait for the server greeting."""
        raise NotImplementedError

    def login(self, username: str, secret: str) -> None:
        """Authenticate the connection."""
        raise NotImplementedError

    def select(self, mailbox: str) -> int:
        """Select a mailbox and return its message count."""
        raise NotImplementedError

    def search(self, unread_only: bool) -> list[int]:
        """Return ascending sequence numbers matching ALL or UNSEEN."""
        raise NotImplementedError

    def fetch(self, sequence_set: str) -> list[FetchedMessage]:
        """Fetch raw payloads, UIDs and flags for a sequence set."""
        raise NotImplementedError

    def store_seen(self, uid: int, seen: bool) -> None:
        """Add or remove the ``\\Seen`` flag on a message by UID."""
        raise NotImplementedError

    def set_timeout(self, timeout: float | None) -> None:
        """Apply a socket timeout to subsequent commands."""
        raise NotImplementedError

    def abort(self) -> None:
        """Forcefully shut the socket down to unblock pending reads."""
        raise NotImplementedError

    def close(self) -> None:
        """Gracefully close the mailbox and log out."""
        raise NotImplementedError


class MessageParser(Protocol):
    """Minimal protocol implemented by message parsers."""

    def parse(
        self, message: FetchedMessage, provider_label: str
    ) -> NormalizedEmail | None:
        """Convert a fetched payload into a normalized email."""
        raise NotImplementedError


class EmailProvider(Protocol):
    """Provider agnostic façade consumed by presentation layers."""

    @property
    def last_error(self) -> ClassifiedError | None:
        """Most recent classified session failure."""
        raise NotImplementedError

    async def authenticate(self, credential: Credential | None = None) -> bool:
        """Authenticate and validate credentials."""
        raise NotImplementedError

    async def fetch_emails(
        self, request: FetchRequest | None = None
    ) -> Sequence[NormalizedEmail]:
        """Fetch a window of normalized emails."""
        raise NotImplementedError

    async def mark_as_read(self, email_id: str, read: bool = True) -> None:
        """Update the read flag of a previously fetched email."""
        raise NotImplementedError

    async def disconnect(self) -> None:
        """Release network resources."""
        raise NotImplementedError

    def provider_info(self) -> dict[str, str]:
        """Return type, display name and email of the provider."""
        raise NotImplementedError


__all__ = [
    "EmailProvider",
    "FetchError",
    "MailEngineError",
    "MailTransport",
    "MessageParser",
    "SessionStateError",
]
