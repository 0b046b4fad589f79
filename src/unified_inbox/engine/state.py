"""Explicit session state machine with guarded transitions."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

from ..core.interfaces import SessionStateError
from ..core.models import ClassifiedError, SessionEvent

LOGGER = logging.getLogger(__name__)

EventListener = Callable[[SessionEvent], None]


class SessionState(str, Enum):
    """Lifecycle states of one IMAP session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    MAILBOX_SELECTING = "mailbox_selecting"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"

    @property
    def terminal(self) -> bool:
        """Whether the session can never leave this state."""
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({SessionState.FAILED, SessionState.CLOSED})

LEGAL_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.DISCONNECTED: frozenset(
        {SessionState.CONNECTING, SessionState.CLOSED}
    ),
    SessionState.CONNECTING: frozenset(
        {SessionState.AUTHENTICATING, SessionState.FAILED, SessionState.CLOSED}
    ),
    SessionState.AUTHENTICATING: frozenset(
        {SessionState.MAILBOX_SELECTING, SessionState.FAILED, SessionState.CLOSED}
    ),
    SessionState.MAILBOX_SELECTING: frozenset(
        {SessionState.READY, SessionState.FAILED, SessionState.CLOSED}
    ),
    SessionState.READY: frozenset(
        {SessionState.MAILBOX_SELECTING, SessionState.FAILED, SessionState.CLOSED}
    ),
    SessionState.FAILED: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}


class SessionStateMachine:
    """Track the current state and settle each transition exactly once."""

    def __init__(self, listener: EventListener | None = None) -> None:
        """Start in ``DISCONNECTED`` with an optional event listener."""
        self._state = SessionState.DISCONNECTED
        self._error: ClassifiedError | None = None
        self._listener = listener
        self._lock = threading.Lock()

    @property
    def state(self) -> SessionState:
        """Current state."""
        return self._state

    @property
    def error(self) -> ClassifiedError | None:
        """Error that moved the machine to ``FAILED``, if any."""
        return self._error

    def can_transition(self, target: SessionState) -> bool:
        """Return whether ``target`` is reachable from the current state."""
        return target in LEGAL_TRANSITIONS[self._state]

    def transition(self, target: SessionState, **detail: Any) -> None:
        """Move to ``target``, raising :class:`SessionStateError` if illegal."""
        with self._lock:
            current = self._state
            if target not in LEGAL_TRANSITIONS[current]:
                raise SessionStateError(
                    f"Illegal session transition {current.value} -> {target.value}"
                )
            self._state = target
        self._emit_transition(current, target, detail)

    def try_transition(
        self, expected: SessionState, target: SessionState, **detail: Any
    ) -> bool:
        """Move to ``target`` only if the state is still ``expected``.

        Returns ``False`` without side effects when another path already
        settled the pending operation.
        """
        with self._lock:
            if self._state is not expected or target not in LEGAL_TRANSITIONS[expected]:
                return False
            self._state = target
        self._emit_transition(expected, target, detail)
        return True

    def fail(
        self, error: ClassifiedError, expected: SessionState | None = None
    ) -> bool:
        """Settle the session as ``FAILED`` once; later failures are ignored."""
        with self._lock:
            current = self._state
            if current.terminal or (expected is not None and current is not expected):
                return False
            self._state = SessionState.FAILED
            self._error = error
        self.emit(
            "session.failed",
            logging.WARNING,
            previous=current.value,
            category=error.category.value,
            message=error.original_message,
        )
        return True

    def close(self) -> bool:
        """Move to ``CLOSED`` from any state; returns ``False`` if already closed."""
        with self._lock:
            current = self._state
            if current is SessionState.CLOSED:
                return False
            self._state = SessionState.CLOSED
        self._emit_transition(current, SessionState.CLOSED, {})
        return True

    def require(self, *states: SessionState, operation: str) -> None:
        """Raise :class:`SessionStateError` unless in one of ``states``."""
        if self._state not in states:
            raise SessionStateError(
                f"Cannot {operation} while session is {self._state.value}",
                self._error,
            )

    def emit(self, name: str, level: int = logging.DEBUG, **detail: Any) -> None:
        """Publish a structured event to the logger and the listener."""
        event = SessionEvent(
            name=name, level=level, state=self._state.value, detail=detail
        )
        LOGGER.log(level, "%s state=%s %s", name, event.state, detail)
        if self._listener is None:
            return
        try:
            self._listener(event)
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception("Session event listener failed for %s", name)

    def _emit_transition(
        self, previous: SessionState, target: SessionState, detail: dict[str, Any]
    ) -> None:
        self.emit(
            "session.transition",
            logging.INFO if target is SessionState.READY else logging.DEBUG,
            previous=previous.value,
            target=target.value,
            **detail,
        )


__all__ = [
    "EventListener",
    "LEGAL_TRANSITIONS",
    "SessionState",
    "SessionStateMachine",
    "TERMINAL_STATES",
]
