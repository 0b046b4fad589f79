"""Engine boundary consumed by the provider agnostic façade."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from ..core.config import EngineSettings
from ..core.interfaces import (
    EmailProvider,
    FetchError,
    MailEngineError,
    MessageParser,
    SessionStateError,
)
from ..core.models import (
    ClassifiedError,
    Credential,
    FetchReport,
    FetchRequest,
    NormalizedEmail,
)
from ..ingestion.fetcher import FetchOrchestrator
from ..ingestion.pagination import plan_window, to_sequence_set
from ..ingestion.parser import MimeParser
from .classifier import ErrorClassifier
from .session import ImapSession, TransportFactory
from .state import EventListener, SessionState

LOGGER = logging.getLogger(__name__)

# Oldest entries are evicted first once the index grows past this size.
MAX_TRACKED_UIDS = 1000


class ImapEngine(EmailProvider):
    """Retrieve normalized emails from one IMAP account, one session at a time.

    Session failures surface as ``False`` plus :attr:`last_error`; whole batch
    fetch failures raise :class:`FetchError`. Calls on one engine must not
    overlap; use one engine per logical mailbox session.
    """

    def __init__(
        self,
        credential: Credential | None = None,
        settings: EngineSettings | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        parser: MessageParser | None = None,
        classifier: ErrorClassifier | None = None,
        event_listener: EventListener | None = None,
    ) -> None:
        """Initialise the engine; no network activity happens until authenticate."""
        self._credential = credential
        self._settings = settings or EngineSettings()
        self._transport_factory = transport_factory
        self._parser = parser or MimeParser(self._settings.preview_length)
        self._classifier = classifier or ErrorClassifier()
        self._event_listener = event_listener
        self._session: ImapSession | None = None
        self._last_error: ClassifiedError | None = None
        self._last_report: FetchReport | None = None
        self._uid_index: dict[str, tuple[str, int]] = {}

    # Introspection -------------------------------------------------------------
    @property
    def last_error(self) -> ClassifiedError | None:
        """Most recent classified session or fetch failure."""
        return self._last_error

    @property
    def last_report(self) -> FetchReport | None:
        """Counts from the most recent successful fetch."""
        return self._last_report

    @property
    def state(self) -> SessionState:
        """State of the current session, ``DISCONNECTED`` when none exists."""
        if self._session is None:
            return SessionState.DISCONNECTED
        return self._session.state

    @property
    def provider_label(self) -> str:
        """Display label attached to every normalized email."""
        if self._credential is None:
            return "IMAP"
        return self._credential.provider.display_name

    def provider_info(self) -> dict[str, str]:
        """Return type, display name and email of this provider."""
        return {
            "type": "imap",
            "displayName": self.provider_label,
            "email": self._credential.email if self._credential else "",
        }

    # Boundary operations -----------------------------------------------------
    async def authenticate(self, credential: Credential | None = None) -> bool:
        """Connect, log in and select the default mailbox.

        Any previous session is torn down first; a failed session is never
        reused.
        """
        if credential is not None:
            self._credential = credential
        if self._credential is None:
            raise ValueError("A credential is required to authenticate")

        if self._session is not None:
            await self._session.disconnect()
        self._uid_index.clear()
        self._last_error = None

        session = ImapSession(
            self._credential,
            self._settings,
            transport_factory=self._transport_factory,
            classifier=self._classifier,
            event_listener=self._event_listener,
        )
        self._session = session
        LOGGER.info(
            "Authenticating %s against %s:%s",
            self._credential.email,
            self._credential.endpoint.host,
            self._credential.endpoint.port,
        )
        authenticated = await session.authenticate(self._settings.mailbox)
        if not authenticated:
            self._last_error = session.error
            category = session.error.category.value if session.error else "unknown"
            LOGGER.warning(
                "Authentication failed for %s (%s)", self._credential.email, category
            )
            await session.disconnect()
        return authenticated

    async def fetch_emails(
        self, request: FetchRequest | None = None
    ) -> list[NormalizedEmail]:
        """Return up to ``request.limit`` emails, newest first.

        Individual parse failures only shrink the result; see
        :attr:`last_report`. Cancellation closes the transport and discards
        partial results.
        """
        session = self._require_ready_session()
        if request is None:
            request = FetchRequest(
                limit=self._settings.default_limit, mailbox=self._settings.mailbox
            )
        if request.limit > self._settings.max_fetch_limit:
            LOGGER.debug(
                "Capping fetch limit %s to %s",
                request.limit,
                self._settings.max_fetch_limit,
            )
            request = replace(request, limit=self._settings.max_fetch_limit)

        try:
            emails, report = await self._fetch(session, request)
        except asyncio.CancelledError:
            LOGGER.info("Fetch cancelled; closing IMAP transport")
            session.abort()
            await session.disconnect()
            raise
        except MailEngineError as exc:
            self._last_error = exc.error
            raise

        self._last_report = report
        self._remember_uids(request.mailbox, emails)
        LOGGER.info(
            "Fetched %s email(s) from %s (requested %s, skipped %s)",
            report.returned,
            request.mailbox,
            report.requested,
            report.failed,
        )
        return emails

    async def mark_as_read(self, email_id: str, read: bool = True) -> None:
        """Best-effort update of the ``\\Seen`` flag for a fetched email.

        Only ids returned by this session's fetches can be resolved; anything
        else is logged and ignored. The mailbox the email was fetched from is
        re-selected first when another one is open.
        """
        location = self._uid_index.get(email_id)
        session = self._session
        if location is None or session is None or not session.ready:
            LOGGER.warning("Cannot update read flag for unknown email %s", email_id)
            return
        mailbox, uid = location
        try:
            if session.selected_mailbox != mailbox:
                if not await session.select_mailbox(mailbox):
                    LOGGER.warning(
                        "Cannot reopen mailbox %s to update %s", mailbox, email_id
                    )
                    return
            await session.store_seen(uid, read)
        except MailEngineError as exc:
            LOGGER.warning("Failed to update read flag for %s: %s", email_id, exc)

    async def disconnect(self) -> None:
        """Close the current session; never raises."""
        session = self._session
        if session is None:
            return
        try:
            await session.disconnect()
        except Exception:  # pylint: disable=broad-except
            LOGGER.debug("Ignoring error during disconnect", exc_info=True)
        self._uid_index.clear()

    # Internal helpers ---------------------------------------------------------
    def _remember_uids(self, mailbox: str, emails: list[NormalizedEmail]) -> None:
        for email in emails:
            if email.uid is not None:
                self._uid_index[email.id] = (mailbox, email.uid)
        while len(self._uid_index) > MAX_TRACKED_UIDS:
            del self._uid_index[next(iter(self._uid_index))]

    def _require_ready_session(self) -> ImapSession:
        session = self._session
        if session is None or not session.ready:
            state = session.state.value if session else SessionState.DISCONNECTED.value
            raise SessionStateError(
                f"Cannot fetch while session is {state}; call authenticate() first",
                session.error if session else None,
            )
        return session

    async def _fetch(
        self, session: ImapSession, request: FetchRequest
    ) -> tuple[list[NormalizedEmail], FetchReport]:
        if request.mailbox != session.selected_mailbox:
            if not await session.select_mailbox(request.mailbox):
                raise FetchError(
                    f"Unable to open mailbox '{request.mailbox}'", session.error
                )

        result = await session.search(request.unread_only)
        window = plan_window(result, request.limit, request.skip)
        if not window:
            LOGGER.debug("No messages in window for %s", request.mailbox)
            return [], FetchReport(requested=0, returned=0, failed=0)

        messages = await session.fetch(to_sequence_set(window))
        orchestrator = FetchOrchestrator(
            self._parser,
            provider_label=self.provider_label,
            max_workers=self._settings.parse_workers,
        )
        return await orchestrator.collect(messages)


__all__ = ["ImapEngine"]
