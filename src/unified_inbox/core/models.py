"""Core domain models shared by the retrieval engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ProviderKind(str, Enum):
    """Mail providers with known IMAP presets."""

    GMAIL = "gmail"
    YAHOO = "yahoo"
    OUTLOOK = "outlook"
    REDIFF = "rediff"
    CUSTOM = "custom"

    @property
    def display_name(self) -> str:
        """Human readable label used on normalized emails."""
        return self.value.capitalize()


class ErrorCategory(str, Enum):
    """Closed taxonomy of engine failures."""

    AUTH_BLOCKED = "auth_blocked"
    AUTH_FAILED = "auth_failed"
    PROTOCOL_DISABLED = "protocol_disabled"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    PARSE_PARTIAL = "parse_partial"


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Network location of an IMAP server."""

    host: str
    port: int = 993
    use_tls: bool = True


@dataclass(frozen=True, slots=True)
class Credential:
    """Resolved account credential handed to the engine."""

    email: str
    provider: ProviderKind
    endpoint: Endpoint
    secret: str = field(repr=False)
    username: str | None = None

    @property
    def login_name(self) -> str:
        """Username sent with LOGIN, defaulting to the email address."""
        return self.username or self.email


@dataclass(frozen=True, slots=True)
class Sender:
    """Display name and address pair extracted from a header."""

    name: str
    address: str


@dataclass(frozen=True, slots=True)
class AttachmentMeta:
    """Metadata describing an email attachment."""

    filename: str = "unknown"
    size_bytes: int = 0
    content_type: str = "application/octet-stream"


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True, slots=True)
class NormalizedEmail:
    """Provider agnostic representation of a fetched message."""

    id: str
    sender: Sender
    subject: str
    preview_text: str
    received_at: datetime
    is_read: bool
    provider_label: str
    body_plain: str | None = None
    body_html: str | None = None
    attachments: tuple[AttachmentMeta, ...] = ()
    uid: int | None = None
    sequence_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON friendly mapping."""
        return {
            "id": self.id,
            "from": {"name": self.sender.name, "email": self.sender.address},
            "subject": self.subject,
            "preview": self.preview_text,
            "date": self.received_at.isoformat(),
            "read": self.is_read,
            "providerName": self.provider_label,
            "body": self.body_plain,
            "html": self.body_html,
            "attachments": [
                {
                    "filename": attachment.filename,
                    "size": attachment.size_bytes,
                    "contentType": attachment.content_type,
                }
                for attachment in self.attachments
            ],
        }


@dataclass(frozen=True, slots=True)
class FetchRequest:
    """Window of messages requested by a caller."""

    limit: int = 20
    skip: int = 0
    unread_only: bool = False
    mailbox: str = "INBOX"

    def __post_init__(self) -> None:
        if self.limit <= 0:
            raise ValueError("limit must be positive")
        if self.skip < 0:
            raise ValueError("skip must not be negative")
        if not self.mailbox:
            raise ValueError("mailbox must not be empty")


@dataclass(frozen=True, slots=True)
class SearchResult:
    """Ascending sequence numbers returned by a SEARCH command."""

    sequence_numbers: tuple[int, ...] = ()

    def __len__(self) -> int:
        return len(self.sequence_numbers)


@dataclass(frozen=True, slots=True)
class FetchedMessage:
    """Raw message payload paired with its FETCH attributes."""

    sequence_number: int
    raw: bytes
    uid: int | None = None
    flags: tuple[str, ...] | None = None


@dataclass(frozen=True, slots=True)
class ClassifiedError:
    """Engine failure mapped onto the closed taxonomy."""

    category: ErrorCategory
    original_message: str
    remediation_hint: str | None = None


@dataclass(slots=True)
class FetchReport:
    """Outcome summary for a fetch call."""

    requested: int
    returned: int
    failed: int

    @property
    def partial(self) -> bool:
        """Whether individual parse failures reduced the batch."""
        return self.failed > 0


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """Structured observability event emitted by a session."""

    name: str
    level: int
    state: str
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


__all__ = [
    "AttachmentMeta",
    "ClassifiedError",
    "Credential",
    "Endpoint",
    "ErrorCategory",
    "FetchReport",
    "FetchRequest",
    "FetchedMessage",
    "NormalizedEmail",
    "ProviderKind",
    "SearchResult",
    "Sender",
    "SessionEvent",
]
