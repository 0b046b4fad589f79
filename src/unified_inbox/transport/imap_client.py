"""IMAP transport adapter providing the blocking command channel."""

from __future__ import annotations

import imaplib
import logging
import re
import socket
import ssl
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from ..core.interfaces import MailTransport
from ..core.models import Endpoint, FetchedMessage

LOGGER = logging.getLogger(__name__)

FETCH_ITEMS = "(UID FLAGS BODY.PEEK[])"

_SEQUENCE = re.compile(rb"^\s*(\d+)\s+\(")
_UID = re.compile(rb"UID\s+(\d+)", re.IGNORECASE)
_FLAGS = re.compile(rb"FLAGS\s+\(([^)]*)\)", re.IGNORECASE)

ConnectionFactory = Callable[..., Any]


class ImapError(RuntimeError):
    """Wrap low level IMAP errors with additional context."""


def build_ssl_context() -> ssl.SSLContext:
    """Return a verifying TLS context that refuses anything below TLS 1.2."""
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


def describe_error(exc: BaseException) -> str:
    """Return the server text carried by an error, decoding raw replies."""
    detail = exc.args[0] if len(exc.args) == 1 else None
    if isinstance(detail, bytes):
        return detail.decode("utf-8", errors="replace")
    if isinstance(detail, str):
        return detail
    return str(exc) or exc.__class__.__name__


@contextmanager
def _command(context: str | None = None) -> Iterator[None]:
    """Translate rejected commands into :class:`ImapError`.

    ``imaplib.IMAP4.abort`` signals a dead connection and is left untouched.
    """
    try:
        yield
    except imaplib.IMAP4.abort:
        raise
    except imaplib.IMAP4.error as exc:
        detail = describe_error(exc)
        raise ImapError(f"{context}: {detail}" if context else detail) from exc


class ImapTransport(MailTransport):
    """Thin wrapper around ``imaplib`` offering typed command helpers."""

    def __init__(
        self,
        endpoint: Endpoint,
        *,
        connection_factory: ConnectionFactory | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        """Initialise the transport for an endpoint without connecting."""
        self._endpoint = endpoint
        self._factory = connection_factory
        self._ssl_context = ssl_context
        self._connection: Any | None = None

    @property
    def connected(self) -> bool:
        """Whether a connection handle is currently held."""
        return self._connection is not None

    # Public API ---------------------------------------------------------------
    def open(self, timeout: float) -> None:
        """Connect, wait for the greeting and ensure the channel is encrypted."""
        if self._connection is not None:
            return
        context = self._ssl_context or build_ssl_context()
        host, port = self._endpoint.host, self._endpoint.port
        with _command("Connection rejected"):
            if self._factory is not None:
                connection = self._factory(
                    host, port, timeout=timeout, ssl_context=context
                )
            elif self._endpoint.use_tls:
                LOGGER.debug("Connecting to IMAP host %s:%s via TLS", host, port)
                connection = imaplib.IMAP4_SSL(
                    host, port, ssl_context=context, timeout=timeout
                )
            else:
                LOGGER.debug(
                    "Connecting to IMAP host %s:%s with STARTTLS", host, port
                )
                connection = imaplib.IMAP4(host, port, timeout=timeout)
                connection.starttls(ssl_context=context)
        self._connection = connection

    def login(self, username: str, secret: str) -> None:
        """Issue LOGIN, raising :class:`ImapError` with the bare server text."""
        connection = self._require_connection()
        LOGGER.debug("Authenticating as %s", username)
        with _command():
            status, data = connection.login(username, secret)
        if status != "OK":
            raise ImapError(_first_line(data) or "LOGIN failed.")

    def select(self, mailbox: str) -> int:
        """Select ``mailbox`` read-write and return its message count."""
        connection = self._require_connection()
        context = f"Unable to select mailbox '{mailbox}'"
        with _command(context):
            status, data = connection.select(_quote_mailbox(mailbox))
        if status != "OK":
            raise ImapError(f"{context}: {_first_line(data)}")
        try:
            return int(_first_line(data) or 0)
        except ValueError:
            return 0

    def search(self, unread_only: bool) -> list[int]:
        """Return ascending sequence numbers for ALL or UNSEEN messages."""
        connection = self._require_connection()
        criterion = "UNSEEN" if unread_only else "ALL"
        LOGGER.debug("Searching mailbox with criterion %s", criterion)
        context = f"SEARCH {criterion} failed"
        with _command(context):
            status, data = connection.search(None, criterion)
        if status != "OK":
            raise ImapError(f"{context}: {_first_line(data)}")
        raw_ids = data[0].split() if data and data[0] else []
        return sorted(int(raw_id) for raw_id in raw_ids)

    def fetch(self, sequence_set: str) -> list[FetchedMessage]:
        """Fetch payloads, UIDs and flags in a single FETCH command."""
        connection = self._require_connection()
        LOGGER.debug("Fetching %s for %s", FETCH_ITEMS, sequence_set)
        context = f"FETCH {sequence_set} failed"
        with _command(context):
            status, data = connection.fetch(sequence_set, FETCH_ITEMS)
        if status != "OK":
            raise ImapError(f"{context}: {_first_line(data)}")
        return parse_fetch_response(data)

    def store_seen(self, uid: int, seen: bool) -> None:
        """Add or remove ``\\Seen`` on the message identified by ``uid``."""
        connection = self._require_connection()
        operation = "+FLAGS.SILENT" if seen else "-FLAGS.SILENT"
        LOGGER.debug("Applying %s (\\Seen) to UID %s", operation, uid)
        context = f"STORE on UID {uid} failed"
        with _command(context):
            status, data = connection.uid("STORE", str(uid), operation, r"(\Seen)")
        if status != "OK":
            raise ImapError(f"{context}: {_first_line(data)}")

    def set_timeout(self, timeout: float | None) -> None:
        """Apply ``timeout`` to the underlying socket when one exists."""
        sock = getattr(self._connection, "sock", None)
        if sock is not None:
            sock.settimeout(timeout)

    def abort(self) -> None:
        """Shut the socket down so blocked reads in other threads return."""
        sock = getattr(self._connection, "sock", None)
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            LOGGER.debug("Socket shutdown raised; connection already gone")

    def close(self) -> None:
        """Terminate the IMAP session cleanly, always releasing the socket."""
        connection = self._connection
        if connection is None:
            return
        self._connection = None
        try:
            if getattr(connection, "state", None) == "SELECTED":
                LOGGER.debug("Closing selected mailbox")
                connection.close()
        except (imaplib.IMAP4.error, OSError):
            LOGGER.debug("IMAP close raised; continuing with logout")
        try:
            connection.logout()
        except (imaplib.IMAP4.error, OSError):
            LOGGER.debug("IMAP logout raised; suppressing during shutdown")
        finally:
            try:
                connection.shutdown()
            except (imaplib.IMAP4.error, OSError):
                LOGGER.debug("IMAP shutdown raised; socket already released")

    # Internal helpers ---------------------------------------------------------
    def _require_connection(self) -> Any:
        if self._connection is None:
            raise ImapError("IMAP connection has not been established")
        return self._connection


def parse_fetch_response(data: list[Any]) -> list[FetchedMessage]:
    """Convert ``imaplib`` FETCH response chunks into :class:`FetchedMessage`.

    Attributes may precede or follow the message literal, so trailing byte
    chunks are folded into the preceding message's attribute text.
    """
    pending: list[tuple[int, bytes, bytes]] = []
    for entry in data:
        if isinstance(entry, tuple) and len(entry) == 2:
            header, payload = entry
            match = _SEQUENCE.match(header)
            if match is None:
                LOGGER.warning("Ignoring FETCH chunk without sequence number")
                continue
            pending.append((int(match.group(1)), header, payload))
        elif isinstance(entry, bytes) and pending:
            sequence_number, header, payload = pending[-1]
            pending[-1] = (sequence_number, header + b" " + entry, payload)

    messages: list[FetchedMessage] = []
    for sequence_number, attributes, payload in pending:
        uid_match = _UID.search(attributes)
        flags_match = _FLAGS.search(attributes)
        flags = (
            tuple(flags_match.group(1).decode("ascii", errors="replace").split())
            if flags_match
            else None
        )
        messages.append(
            FetchedMessage(
                sequence_number=sequence_number,
                raw=payload,
                uid=int(uid_match.group(1)) if uid_match else None,
                flags=flags,
            )
        )
    return messages


def _first_line(data: Any) -> str:
    if not data:
        return ""
    first = data[0]
    if isinstance(first, bytes):
        return first.decode("utf-8", errors="replace")
    return "" if first is None else str(first)


def _quote_mailbox(mailbox: str) -> str:
    if mailbox.startswith('"') or not any(char in mailbox for char in ' ()"'):
        return mailbox
    escaped = mailbox.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


__all__ = [
    "FETCH_ITEMS",
    "ImapError",
    "ImapTransport",
    "build_ssl_context",
    "describe_error",
    "parse_fetch_response",
]
