"""Tests for the IMAP session and engine boundary using a fake transport."""

# pylint: disable=protected-access

from __future__ import annotations

import asyncio
import threading
import time

import pytest

from unified_inbox.core.config import EngineSettings
from unified_inbox.core.interfaces import FetchError, SessionStateError
from unified_inbox.core.models import (
    Credential,
    Endpoint,
    ErrorCategory,
    FetchedMessage,
    FetchRequest,
    ProviderKind,
    SessionEvent,
)
from unified_inbox.engine import ImapEngine, SessionState, imap_engine
from unified_inbox.transport import ImapError

CREDENTIAL = Credential(
    email="me@gmail.com",
    provider=ProviderKind.GMAIL,
    endpoint=Endpoint(host="imap.gmail.com"),
    secret="app-password",
)

FAST_SETTINGS = EngineSettings(
    connect_timeout_seconds=0.3,
    auth_timeout_seconds=0.3,
    fetch_timeout_seconds=0.3,
)


def _raw(number: int) -> bytes:
    return (
        f"From: Sender {number} <s{number}@example.com>\r\n"
        f"Subject: Message {number}\r\n"
        f"Date: Wed, {number:02d} Jan 2025 10:00:00 +0000\r\n"
        "\r\n"
        f"Body {number}\r\n"
    ).encode()


def _expand(sequence_set: str) -> list[int]:
    numbers: list[int] = []
    for part in sequence_set.split(","):
        if ":" in part:
            low, high = (int(value) for value in part.split(":"))
            numbers.extend(range(high, low - 1, -1))
        else:
            numbers.append(int(part))
    return numbers


class FakeTransport:
    """In-memory transport; methods listed in ``hang`` block until aborted."""

    def __init__(
        self,
        count: int = 5,
        *,
        hang: frozenset[str] = frozenset(),
        errors: dict[str, BaseException] | None = None,
        unread: tuple[int, ...] = (),
    ) -> None:
        self.count = count
        self.hang = hang
        self.errors = errors or {}
        self.unread = unread
        self.released = threading.Event()
        self.fetch_started = threading.Event()
        self.aborted = False
        self.closed = 0
        self.fetched_sets: list[str] = []
        self.stored: list[tuple[str, int, bool]] = []
        self.selected: list[str] = []

    def _enter(self, name: str) -> None:
        if name in self.hang:
            if name == "fetch":
                self.fetch_started.set()
            self.released.wait(5)
            raise OSError(f"{name} interrupted")
        if name in self.errors:
            raise self.errors[name]

    def open(self, timeout: float) -> None:
        self._enter("open")

    def login(self, username: str, secret: str) -> None:
        self._enter("login")

    def select(self, mailbox: str) -> int:
        self._enter("select")
        self.selected.append(mailbox)
        return self.count

    def search(self, unread_only: bool) -> list[int]:
        self._enter("search")
        if unread_only:
            return list(self.unread)
        return list(range(1, self.count + 1))

    def fetch(self, sequence_set: str) -> list[FetchedMessage]:
        self._enter("fetch")
        self.fetched_sets.append(sequence_set)
        return [
            FetchedMessage(
                sequence_number=number,
                raw=_raw(number),
                uid=100 + number,
                flags=("\\Unseen",) if number in self.unread else ("\\Seen",),
            )
            for number in _expand(sequence_set)
        ]

    def store_seen(self, uid: int, seen: bool) -> None:
        self._enter("store")
        self.stored.append((self.selected[-1], uid, seen))

    def set_timeout(self, timeout: float | None) -> None:
        return None

    def abort(self) -> None:
        self.aborted = True
        self.released.set()

    def close(self) -> None:
        self.closed += 1


def _engine(
    transport: FakeTransport, settings: EngineSettings | None = None, **options
) -> ImapEngine:
    return ImapEngine(
        CREDENTIAL,
        settings or FAST_SETTINGS,
        transport_factory=lambda _endpoint: transport,
        **options,
    )


def test_authenticate_and_fetch_newest_window() -> None:
    transport = FakeTransport(count=5, unread=(4,))
    engine = _engine(transport)

    async def scenario():
        assert await engine.authenticate()
        assert engine.state is SessionState.READY
        return await engine.fetch_emails(FetchRequest(limit=3))

    emails = asyncio.run(scenario())

    assert transport.fetched_sets == ["3:5"]
    assert [email.subject for email in emails] == [
        "Message 5",
        "Message 4",
        "Message 3",
    ]
    assert [email.is_read for email in emails] == [True, False, True]
    assert all(email.provider_label == "Gmail" for email in emails)
    assert engine.last_report is not None
    assert engine.last_report.returned == 3
    assert engine.last_error is None


def test_fetch_with_skip_and_unread_filter() -> None:
    transport = FakeTransport(count=9, unread=(2, 5, 6, 8))
    engine = _engine(transport)

    async def scenario():
        await engine.authenticate()
        return await engine.fetch_emails(
            FetchRequest(limit=2, skip=1, unread_only=True)
        )

    emails = asyncio.run(scenario())

    assert transport.fetched_sets == ["5:6"]
    assert [email.sequence_number for email in emails] == [6, 5]


def test_fetch_of_empty_mailbox_skips_fetch_command() -> None:
    transport = FakeTransport(count=0)
    engine = _engine(transport)

    async def scenario():
        await engine.authenticate()
        return await engine.fetch_emails()

    assert asyncio.run(scenario()) == []
    assert transport.fetched_sets == []


def test_fetch_limit_is_capped() -> None:
    transport = FakeTransport(count=10)
    settings = FAST_SETTINGS.model_copy(update={"max_fetch_limit": 2})
    engine = _engine(transport, settings)

    async def scenario():
        await engine.authenticate()
        return await engine.fetch_emails(FetchRequest(limit=50))

    emails = asyncio.run(scenario())

    assert len(emails) == 2
    assert transport.fetched_sets == ["9:10"]


def test_fetch_before_authenticate_raises_state_error() -> None:
    engine = _engine(FakeTransport())

    with pytest.raises(SessionStateError):
        asyncio.run(engine.fetch_emails())


def test_login_rejection_is_classified_and_session_closed() -> None:
    transport = FakeTransport(
        errors={"login": ImapError("[AUTHENTICATIONFAILED] Invalid credentials")}
    )
    engine = _engine(transport)

    assert asyncio.run(engine.authenticate()) is False
    assert engine.last_error is not None
    assert engine.last_error.category is ErrorCategory.AUTH_FAILED
    assert engine.last_error.remediation_hint
    assert engine.state is SessionState.CLOSED
    assert transport.closed == 1


def test_basic_auth_blocked_is_reported() -> None:
    transport = FakeTransport(
        errors={"login": ImapError("AUTHENTICATE failed: BasicAuthBlocked")}
    )
    engine = _engine(transport)

    assert asyncio.run(engine.authenticate()) is False
    assert engine.last_error.category is ErrorCategory.AUTH_BLOCKED


def test_hung_login_times_out_within_budget() -> None:
    transport = FakeTransport(hang=frozenset({"login"}))
    engine = _engine(transport)

    started = time.monotonic()
    authenticated = asyncio.run(engine.authenticate())
    elapsed = time.monotonic() - started

    assert authenticated is False
    assert engine.last_error.category is ErrorCategory.TIMEOUT
    assert transport.aborted
    assert elapsed < FAST_SETTINGS.auth_timeout_seconds + 2.0


def test_hung_greeting_times_out() -> None:
    transport = FakeTransport(hang=frozenset({"open"}))
    engine = _engine(transport)

    assert asyncio.run(engine.authenticate()) is False
    assert engine.last_error.category is ErrorCategory.TIMEOUT


def test_connection_refused_is_transport_error() -> None:
    transport = FakeTransport(errors={"open": ConnectionRefusedError("refused")})
    engine = _engine(transport)

    assert asyncio.run(engine.authenticate()) is False
    assert engine.last_error.category is ErrorCategory.TRANSPORT


def test_select_failure_fails_authentication() -> None:
    transport = FakeTransport(
        errors={"select": ImapError("Unable to select mailbox 'INBOX': NO")}
    )
    engine = _engine(transport)

    assert asyncio.run(engine.authenticate()) is False
    assert engine.last_error.category is ErrorCategory.TRANSPORT
    assert engine.last_error.remediation_hint


def test_rejected_search_keeps_session_ready() -> None:
    transport = FakeTransport(errors={"search": ImapError("SEARCH ALL failed: BAD")})
    engine = _engine(transport)

    async def scenario():
        await engine.authenticate()
        with pytest.raises(FetchError) as excinfo:
            await engine.fetch_emails()
        return excinfo.value

    error = asyncio.run(scenario())

    assert error.category is ErrorCategory.TRANSPORT
    assert engine.state is SessionState.READY
    assert engine.last_error is error.error


def test_dropped_connection_fails_session() -> None:
    transport = FakeTransport(errors={"search": ConnectionResetError("reset")})
    engine = _engine(transport)

    async def scenario():
        await engine.authenticate()
        with pytest.raises(FetchError):
            await engine.fetch_emails()
        with pytest.raises(SessionStateError):
            await engine.fetch_emails()

    asyncio.run(scenario())

    assert engine.state is SessionState.FAILED
    assert engine.last_error.category is ErrorCategory.TRANSPORT


def test_hung_fetch_times_out_and_fails_session() -> None:
    transport = FakeTransport(hang=frozenset({"fetch"}))
    engine = _engine(transport)

    async def scenario():
        await engine.authenticate()
        with pytest.raises(FetchError) as excinfo:
            await engine.fetch_emails()
        return excinfo.value

    error = asyncio.run(scenario())

    assert error.category is ErrorCategory.TIMEOUT
    assert engine.state is SessionState.FAILED
    assert transport.aborted


def test_cancelled_fetch_closes_session() -> None:
    settings = FAST_SETTINGS.model_copy(update={"fetch_timeout_seconds": 5.0})
    transport = FakeTransport(hang=frozenset({"fetch"}))
    engine = _engine(transport, settings)

    async def scenario():
        await engine.authenticate()
        task = asyncio.create_task(engine.fetch_emails())
        while not transport.fetch_started.is_set():
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert transport.aborted
    assert engine.state is SessionState.CLOSED


def test_all_messages_failing_to_parse_raises_partial() -> None:
    class RejectingParser:
        def parse(self, message, provider_label):
            return None

    engine = _engine(FakeTransport(count=3), parser=RejectingParser())

    async def scenario():
        await engine.authenticate()
        await engine.fetch_emails()

    with pytest.raises(FetchError) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.category is ErrorCategory.PARSE_PARTIAL
    assert engine.last_error.category is ErrorCategory.PARSE_PARTIAL


def test_fetch_from_other_mailbox_reselects() -> None:
    transport = FakeTransport(count=2)
    engine = _engine(transport)

    async def scenario():
        await engine.authenticate()
        return await engine.fetch_emails(FetchRequest(limit=5, mailbox="Archive"))

    emails = asyncio.run(scenario())

    assert transport.selected == ["INBOX", "Archive"]
    assert len(emails) == 2


def test_mark_as_read_updates_seen_flag_by_uid() -> None:
    transport = FakeTransport(count=3)
    engine = _engine(transport)

    async def scenario():
        await engine.authenticate()
        emails = await engine.fetch_emails()
        await engine.mark_as_read(emails[0].id, read=False)
        await engine.mark_as_read("imap-unknown")

    asyncio.run(scenario())

    assert transport.stored == [("INBOX", 103, False)]


def test_mark_as_read_reopens_mailbox_the_email_came_from() -> None:
    transport = FakeTransport(count=3)
    engine = _engine(transport)

    async def scenario():
        await engine.authenticate()
        inbox = await engine.fetch_emails(FetchRequest(limit=3))
        await engine.fetch_emails(FetchRequest(limit=3, mailbox="Archive"))
        await engine.mark_as_read(inbox[0].id)

    asyncio.run(scenario())

    assert transport.selected == ["INBOX", "Archive", "INBOX"]
    assert transport.stored == [("INBOX", 103, True)]


def test_tracked_uids_are_bounded(monkeypatch) -> None:
    monkeypatch.setattr(imap_engine, "MAX_TRACKED_UIDS", 4)
    engine = _engine(FakeTransport(count=3))

    async def scenario():
        await engine.authenticate()
        latest = []
        for _ in range(5):
            latest = await engine.fetch_emails()
        return latest

    latest = asyncio.run(scenario())

    assert len(engine._uid_index) <= 4
    assert all(email.id in engine._uid_index for email in latest)


def test_disconnect_is_safe_in_any_state() -> None:
    transport = FakeTransport()
    engine = _engine(transport)

    async def scenario():
        await engine.disconnect()
        await engine.authenticate()
        await engine.disconnect()
        await engine.disconnect()

    asyncio.run(scenario())

    assert engine.state is SessionState.CLOSED
    assert transport.closed == 2


def test_reauthenticate_replaces_session() -> None:
    transports = [FakeTransport(), FakeTransport()]
    engine = ImapEngine(
        CREDENTIAL,
        FAST_SETTINGS,
        transport_factory=lambda _endpoint: transports.pop(0),
    )

    async def scenario():
        assert await engine.authenticate()
        assert await engine.authenticate()

    asyncio.run(scenario())

    assert engine.state is SessionState.READY


def test_session_events_reach_listener() -> None:
    events: list[SessionEvent] = []
    engine = _engine(FakeTransport(), event_listener=events.append)

    asyncio.run(engine.authenticate())

    names = {event.name for event in events}
    assert "session.transition" in names
    assert any(event.detail.get("target") == "ready" for event in events)
    assert all("app-password" not in str(event.detail) for event in events)


def test_provider_info() -> None:
    engine = _engine(FakeTransport())

    assert engine.provider_info() == {
        "type": "imap",
        "displayName": "Gmail",
        "email": "me@gmail.com",
    }
