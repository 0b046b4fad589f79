"""Utilities for parsing raw RFC822 messages into normalized emails."""

from __future__ import annotations

import html
import logging
import re
import threading
import time
from collections.abc import Iterable
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser

from ..core.datetime_utils import parse_header_date, utc_now
from ..core.models import AttachmentMeta, FetchedMessage, NormalizedEmail
from .addresses import normalize_address

LOGGER = logging.getLogger(__name__)

NO_SUBJECT = "(No subject)"
DEFAULT_PREVIEW_LENGTH = 100
ELLIPSIS = "..."

_HIDDEN_BLOCKS = re.compile(
    r"<(script|style|head)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_TAGS = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")
_UNSEEN_FLAGS = {"\\unseen", "$unseen"}

_stamp_lock = threading.Lock()
_last_stamp = 0


def strip_html(markup: str) -> str:
    """Remove tags and decode entities from an HTML fragment."""
    without_blocks = _HIDDEN_BLOCKS.sub(" ", markup)
    return html.unescape(_TAGS.sub(" ", without_blocks))


def make_preview(
    text: str | None,
    max_length: int = DEFAULT_PREVIEW_LENGTH,
    *,
    strip_tags: bool = True,
) -> str:
    """Collapse whitespace and truncate ``text`` to ``max_length`` characters.

    An ellipsis is appended only when the text was actually truncated.
    """
    if not text:
        return ""
    source = strip_html(text) if strip_tags else text
    cleaned = _WHITESPACE.sub(" ", source).strip()
    if len(cleaned) <= max_length:
        return cleaned
    return cleaned[:max_length].rstrip() + ELLIPSIS


def is_read_from_flags(flags: Iterable[str] | None) -> bool:
    """Return whether a message counts as read given its IMAP flags.

    Messages are read unless the server explicitly reports them unseen.
    """
    if not flags:
        return True
    return not any(flag.lower() in _UNSEEN_FLAGS for flag in flags)


def _next_stamp() -> int:
    """Return epoch milliseconds, strictly increasing within the process."""
    global _last_stamp  # pylint: disable=global-statement
    with _stamp_lock:
        _last_stamp = max(time.time_ns() // 1_000_000, _last_stamp + 1)
        return _last_stamp


class MimeParser:
    """Convert raw email payloads into :class:`NormalizedEmail` records."""

    def __init__(self, preview_length: int = DEFAULT_PREVIEW_LENGTH) -> None:
        """Prepare internal parser instance."""
        self._parser = BytesParser(policy=policy.default)
        self._preview_length = preview_length

    def parse(
        self, message: FetchedMessage, provider_label: str
    ) -> NormalizedEmail | None:
        """Parse a fetched payload, returning ``None`` when it cannot be read."""
        try:
            return self._parse(message, provider_label)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning(
                "Failed to parse message %s: %s",
                message.sequence_number,
                exc,
                exc_info=True,
            )
            return None

    def _parse(self, fetched: FetchedMessage, provider_label: str) -> NormalizedEmail:
        message = self._parser.parsebytes(fetched.raw)
        from_header = message.get("From")
        sender = normalize_address(str(from_header) if from_header else None)
        subject_header = message.get("Subject")
        subject = str(subject_header).strip() if subject_header else ""

        body_plain, body_html = _extract_bodies(message)
        if body_plain:
            preview = make_preview(body_plain, self._preview_length, strip_tags=False)
        else:
            preview = make_preview(body_html, self._preview_length)

        return NormalizedEmail(
            id=f"imap-{fetched.sequence_number}-{_next_stamp()}",
            sender=sender,
            subject=subject or NO_SUBJECT,
            preview_text=preview,
            received_at=parse_header_date(message.get("Date")) or utc_now(),
            is_read=is_read_from_flags(fetched.flags),
            provider_label=provider_label,
            body_plain=body_plain,
            body_html=body_html,
            attachments=tuple(_collect_attachments(message)),
            uid=fetched.uid,
            sequence_number=fetched.sequence_number,
        )


def _collapse_chunks(chunks: Iterable[str], separator: str) -> str | None:
    filtered_chunks = [chunk for chunk in chunks if chunk]
    if not filtered_chunks:
        return None
    return separator.join(filtered_chunks)


def _extract_bodies(message: EmailMessage) -> tuple[str | None, str | None]:
    plain_chunks: list[str] = []
    html_chunks: list[str] = []

    for part in message.walk():
        if part.is_multipart():
            continue
        if part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type not in {"text/plain", "text/html"}:
            continue
        try:
            content_obj = part.get_content()
        except LookupError:
            continue
        if not isinstance(content_obj, str):
            continue
        content = content_obj.strip()
        if content_type == "text/plain":
            plain_chunks.append(content)
        else:
            html_chunks.append(content)

    text = _collapse_chunks(plain_chunks, "\n\n")
    markup = _collapse_chunks(html_chunks, "\n")
    return text, markup


def _collect_attachments(message: EmailMessage) -> Iterable[AttachmentMeta]:
    for part in message.iter_attachments():
        payload = part.get_payload(decode=True) or b""
        yield AttachmentMeta(
            filename=part.get_filename() or "unknown",
            size_bytes=len(payload),
            content_type=part.get_content_type() or "application/octet-stream",
        )


__all__ = [
    "DEFAULT_PREVIEW_LENGTH",
    "MimeParser",
    "NO_SUBJECT",
    "is_read_from_flags",
    "make_preview",
    "strip_html",
]
