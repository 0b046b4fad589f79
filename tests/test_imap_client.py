"""Tests for the IMAP transport adapter."""

# pylint: disable=protected-access

from __future__ import annotations

import imaplib
from unittest.mock import MagicMock

import pytest

from unified_inbox.core.models import Endpoint
from unified_inbox.transport import ImapError, ImapTransport
from unified_inbox.transport.imap_client import FETCH_ITEMS, parse_fetch_response


def _transport(connection: MagicMock) -> ImapTransport:
    transport = ImapTransport(Endpoint(host="imap.test"))
    transport._connection = connection  # type: ignore[attr-defined]
    return transport


def test_open_uses_connection_factory() -> None:
    connection = MagicMock()
    factory = MagicMock(return_value=connection)
    transport = ImapTransport(
        Endpoint(host="imap.test", port=1993), connection_factory=factory
    )

    transport.open(5.0)
    transport.open(5.0)

    assert transport.connected
    factory.assert_called_once()
    args, kwargs = factory.call_args
    assert args == ("imap.test", 1993)
    assert kwargs["timeout"] == 5.0


def test_login_rejection_carries_bare_server_text() -> None:
    connection = MagicMock()
    connection.login.side_effect = imaplib.IMAP4.error(
        b"[AUTHENTICATIONFAILED] Invalid credentials (Failure)"
    )

    with pytest.raises(ImapError) as excinfo:
        _transport(connection).login("user", "secret")

    assert str(excinfo.value) == "[AUTHENTICATIONFAILED] Invalid credentials (Failure)"


def test_connection_abort_is_not_wrapped() -> None:
    connection = MagicMock()
    connection.search.side_effect = imaplib.IMAP4.abort("socket error: EOF")

    with pytest.raises(imaplib.IMAP4.abort):
        _transport(connection).search(unread_only=False)


def test_select_returns_message_count_and_quotes_names() -> None:
    connection = MagicMock()
    connection.select.return_value = ("OK", [b"42"])

    count = _transport(connection).select("Sent Items")

    assert count == 42
    connection.select.assert_called_once_with('"Sent Items"')


def test_select_failure_raises() -> None:
    connection = MagicMock()
    connection.select.return_value = ("NO", [b"Mailbox does not exist"])

    with pytest.raises(ImapError, match="Mailbox does not exist"):
        _transport(connection).select("Missing")


def test_search_returns_sorted_sequence_numbers() -> None:
    connection = MagicMock()
    connection.search.return_value = ("OK", [b"3 1 2"])

    numbers = _transport(connection).search(unread_only=True)

    assert numbers == [1, 2, 3]
    connection.search.assert_called_once_with(None, "UNSEEN")


def test_search_of_empty_mailbox() -> None:
    connection = MagicMock()
    connection.search.return_value = ("OK", [b""])

    assert _transport(connection).search(unread_only=False) == []


def test_fetch_issues_single_bulk_command() -> None:
    connection = MagicMock()
    connection.fetch.return_value = (
        "OK",
        [
            (b"9 (UID 109 FLAGS (\\Seen) BODY[] {5}", b"nine!"),
            b")",
            (b"8 (UID 108 FLAGS () BODY[] {5}", b"eight"),
            b")",
        ],
    )

    messages = _transport(connection).fetch("8:9")

    connection.fetch.assert_called_once_with("8:9", FETCH_ITEMS)
    assert [message.sequence_number for message in messages] == [9, 8]
    assert messages[0].uid == 109
    assert messages[0].flags == ("\\Seen",)
    assert messages[0].raw == b"nine!"
    assert messages[1].flags == ()


def test_parse_fetch_response_reads_trailing_attributes() -> None:
    data = [
        (b"4 (BODY[] {3}", b"abc"),
        b" UID 204 FLAGS (\\Seen \\Answered))",
    ]

    messages = parse_fetch_response(data)

    assert len(messages) == 1
    assert messages[0].uid == 204
    assert messages[0].flags == ("\\Seen", "\\Answered")


def test_parse_fetch_response_without_flags() -> None:
    messages = parse_fetch_response([(b"5 (UID 5 BODY[] {1}", b"x"), b")"])

    assert messages[0].flags is None


def test_store_seen_uses_uid_store() -> None:
    connection = MagicMock()
    connection.uid.return_value = ("OK", [b""])

    _transport(connection).store_seen(101, seen=False)

    connection.uid.assert_called_once_with("STORE", "101", "-FLAGS.SILENT", r"(\Seen)")


def test_close_is_idempotent_and_suppresses_errors() -> None:
    connection = MagicMock()
    connection.state = "SELECTED"
    connection.logout.side_effect = OSError("broken pipe")
    transport = _transport(connection)

    transport.close()
    transport.close()

    connection.close.assert_called_once()
    connection.shutdown.assert_called_once()
    assert not transport.connected


def test_commands_require_connection() -> None:
    transport = ImapTransport(Endpoint(host="imap.test"))

    with pytest.raises(ImapError):
        transport.search(unread_only=False)
    transport.abort()
