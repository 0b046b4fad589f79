"""Single IMAP session driving connect, login, select, search and fetch."""

from __future__ import annotations

import asyncio
import imaplib
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from ..core.config import EngineSettings
from ..core.interfaces import FetchError, MailTransport
from ..core.models import (
    ClassifiedError,
    Credential,
    Endpoint,
    ErrorCategory,
    FetchedMessage,
    SearchResult,
)
from ..transport.imap_client import ImapError, ImapTransport
from .classifier import ErrorClassifier
from .state import EventListener, SessionState, SessionStateMachine

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

TransportFactory = Callable[[Endpoint], MailTransport]

# Failures after which the connection can no longer be trusted.
_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (OSError, imaplib.IMAP4.abort)


class StageTimeout(Exception):
    """Internal marker raised when a stage exceeds its budget."""


class ImapSession:
    """Own one transport and walk it through the session state machine.

    Every protocol operation is serialized by an ``asyncio.Lock`` and runs in
    a worker thread bounded by the stage's timeout. Session level failures are
    classified and reported through :attr:`error` instead of being raised.
    """

    def __init__(
        self,
        credential: Credential,
        settings: EngineSettings | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        classifier: ErrorClassifier | None = None,
        event_listener: EventListener | None = None,
    ) -> None:
        """Create a disconnected session for ``credential``."""
        self._credential = credential
        self._settings = settings or EngineSettings()
        factory = transport_factory or ImapTransport
        self._transport = factory(credential.endpoint)
        self._classifier = classifier or ErrorClassifier()
        self._machine = SessionStateMachine(event_listener)
        self._lock = asyncio.Lock()
        self.selected_mailbox: str | None = None
        self.message_count: int = 0

    # Introspection -------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._machine.state

    @property
    def error(self) -> ClassifiedError | None:
        """Classified error that failed the session, if any."""
        return self._machine.error

    @property
    def ready(self) -> bool:
        """Whether search and fetch are currently allowed."""
        return self._machine.state is SessionState.READY

    # Session lifecycle ---------------------------------------------------------
    async def connect(self) -> bool:
        """Open the transport and wait for the greeting within the budget."""
        async with self._lock:
            return await self._connect()

    async def authenticate(self, mailbox: str | None = None) -> bool:
        """Log in and select ``mailbox``; return ``False`` on any failure.

        Connects first when needed. Login and mailbox selection share the
        authentication budget.
        """
        target = mailbox or self._settings.mailbox
        async with self._lock:
            if self._machine.state is SessionState.DISCONNECTED:
                if not await self._connect():
                    return False
            self._machine.require(SessionState.AUTHENTICATING, operation="authenticate")

            loop = asyncio.get_running_loop()
            deadline = loop.time() + self._settings.auth_timeout_seconds
            self._machine.emit(
                "command.login", logging.DEBUG, username=self._credential.login_name
            )
            try:
                await self._call(
                    self._transport.login,
                    self._credential.login_name,
                    self._credential.secret,
                    timeout=deadline - loop.time(),
                )
            except StageTimeout as exc:
                self._settle_failure(exc, SessionState.AUTHENTICATING, timed_out=True)
                return False
            except Exception as exc:  # pylint: disable=broad-except
                self._settle_failure(exc, SessionState.AUTHENTICATING)
                return False

            if not self._machine.try_transition(
                SessionState.AUTHENTICATING, SessionState.MAILBOX_SELECTING
            ):
                return False
            return await self._select(target, deadline - loop.time())

    async def select_mailbox(self, name: str) -> bool:
        """Select another mailbox on an authenticated session."""
        async with self._lock:
            self._machine.require(
                SessionState.READY, operation=f"select mailbox '{name}'"
            )
            self._machine.transition(SessionState.MAILBOX_SELECTING, mailbox=name)
            return await self._select(name, self._settings.auth_timeout_seconds)

    async def disconnect(self) -> None:
        """Tear the session down from any state without raising."""
        self._machine.close()
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._transport.close),
                timeout=self._settings.connect_timeout_seconds,
            )
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.debug("Graceful close failed (%s); aborting transport", exc)
            self.abort()
        self.selected_mailbox = None
        self._machine.emit("session.closed", logging.DEBUG)

    def abort(self) -> None:
        """Shut the socket down immediately, unblocking pending commands."""
        try:
            self._transport.abort()
        except Exception:  # pylint: disable=broad-except
            LOGGER.debug("Transport abort raised; ignoring during teardown")

    # Mailbox operations --------------------------------------------------------
    async def search(self, unread_only: bool = False) -> SearchResult:
        """Return sequence numbers for ALL or UNSEEN messages."""
        async with self._lock:
            self._machine.require(SessionState.READY, operation="search")
            self._machine.emit(
                "command.search", logging.DEBUG, unread_only=unread_only
            )
            numbers = await self._ready_call(
                "SEARCH", self._transport.search, unread_only
            )
            return SearchResult(sequence_numbers=tuple(numbers))

    async def fetch(self, sequence_set: str) -> list[FetchedMessage]:
        """Fetch raw messages for ``sequence_set`` in one bulk command."""
        async with self._lock:
            self._machine.require(SessionState.READY, operation="fetch")
            self._machine.emit(
                "command.fetch", logging.DEBUG, sequence_set=sequence_set
            )
            messages = await self._ready_call(
                "FETCH", self._transport.fetch, sequence_set
            )
            self._machine.emit(
                "command.fetch.completed", logging.DEBUG, received=len(messages)
            )
            return messages

    async def store_seen(self, uid: int, seen: bool) -> None:
        """Set or clear the ``\\Seen`` flag for ``uid``."""
        async with self._lock:
            self._machine.require(SessionState.READY, operation="update flags")
            self._machine.emit("command.store", logging.DEBUG, uid=uid, seen=seen)
            await self._ready_call("STORE", self._transport.store_seen, uid, seen)

    # Internal helpers ---------------------------------------------------------
    async def _connect(self) -> bool:
        endpoint = self._credential.endpoint
        self._machine.transition(
            SessionState.CONNECTING, host=endpoint.host, port=endpoint.port
        )
        timeout = self._settings.connect_timeout_seconds
        try:
            await self._call(self._transport.open, timeout, timeout=timeout)
        except StageTimeout as exc:
            self._settle_failure(exc, SessionState.CONNECTING, timed_out=True)
            return False
        except Exception as exc:  # pylint: disable=broad-except
            self._settle_failure(exc, SessionState.CONNECTING)
            return False
        return self._machine.try_transition(
            SessionState.CONNECTING, SessionState.AUTHENTICATING
        )

    async def _select(self, mailbox: str, timeout: float) -> bool:
        self._machine.emit("command.select", logging.DEBUG, mailbox=mailbox)
        try:
            count = await self._call(self._transport.select, mailbox, timeout=timeout)
        except StageTimeout as exc:
            self._settle_failure(exc, SessionState.MAILBOX_SELECTING, timed_out=True)
            return False
        except Exception as exc:  # pylint: disable=broad-except
            error = ClassifiedError(
                category=ErrorCategory.TRANSPORT,
                original_message=str(exc),
                remediation_hint="Check that the mailbox exists and is accessible",
            )
            if self._machine.fail(error, expected=SessionState.MAILBOX_SELECTING):
                self.abort()
            return False

        if not self._machine.try_transition(
            SessionState.MAILBOX_SELECTING,
            SessionState.READY,
            mailbox=mailbox,
            messages=count,
        ):
            return False
        self.selected_mailbox = mailbox
        self.message_count = count
        return True

    async def _call(self, func: Callable[..., T], *args: Any, timeout: float) -> T:
        """Run a blocking transport call in a thread, bounded by ``timeout``."""
        name = getattr(func, "__name__", "call")
        if timeout <= 0:
            self.abort()
            raise StageTimeout(f"{name} had no time budget left")
        self._transport.set_timeout(timeout)
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout)
        except asyncio.TimeoutError as exc:
            self.abort()
            raise StageTimeout(f"{name} exceeded {timeout:.1f}s") from exc

    async def _ready_call(self, command: str, func: Callable[..., T], *args: Any) -> T:
        """Run a READY-state command, raising :class:`FetchError` on failure."""
        try:
            return await self._call(
                func, *args, timeout=self._settings.fetch_timeout_seconds
            )
        except StageTimeout as exc:
            error = self._classifier.classify(exc, timed_out=True)
            self._machine.fail(error, expected=SessionState.READY)
            raise FetchError(f"{command} timed out", error) from exc
        except ImapError as exc:
            error = ClassifiedError(
                category=ErrorCategory.TRANSPORT, original_message=str(exc)
            )
            raise FetchError(f"{command} was rejected: {exc}", error) from exc
        except _CONNECTION_ERRORS as exc:
            error = self._classifier.classify(exc)
            if self._machine.fail(error, expected=SessionState.READY):
                self.abort()
            message = f"{command} failed: {error.original_message}"
            raise FetchError(message, error) from exc

    def _settle_failure(
        self, exc: BaseException, expected: SessionState, *, timed_out: bool = False
    ) -> None:
        error = self._classifier.classify(exc, timed_out=timed_out)
        if self._machine.fail(error, expected=expected):
            LOGGER.warning(
                "IMAP session for %s failed during %s: %s (%s)",
                self._credential.email,
                expected.value,
                error.category.value,
                error.original_message,
            )
            self.abort()


__all__ = ["ImapSession", "TransportFactory"]
