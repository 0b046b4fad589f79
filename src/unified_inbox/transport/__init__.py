"""Transport adapters for IMAP mail servers."""

from .imap_client import ImapError, ImapTransport

__all__ = ["ImapError", "ImapTransport"]
