"""IMAP retrieval engine: session state machine, classifier and boundary."""

from .classifier import ErrorClassifier, default_hint
from .imap_engine import ImapEngine
from .providers import build_credential, create_provider, imap_endpoint_for
from .session import ImapSession
from .state import SessionState, SessionStateMachine

__all__ = [
    "ErrorClassifier",
    "ImapEngine",
    "ImapSession",
    "SessionState",
    "SessionStateMachine",
    "build_credential",
    "create_provider",
    "default_hint",
    "imap_endpoint_for",
]
