"""Extract display-name/address pairs from free-form header text."""

from __future__ import annotations

import re

from ..core.models import Sender

UNKNOWN_SENDER = "Unknown"

_NAMED_ADDRESS = re.compile(r"(.+?)\s*<(.+?)>")
_BARE_ANGLE_ADDRESS = re.compile(r"^\s*<(.+?)>\s*$")


def normalize_address(header_value: str | None) -> Sender:
    """Split ``Name <addr>`` into a :class:`Sender`.

    Text without an angle-bracket pair is used as both name and address.
    """
    text = (header_value or "").strip()
    if not text:
        return Sender(name=UNKNOWN_SENDER, address=UNKNOWN_SENDER)

    bare = _BARE_ANGLE_ADDRESS.match(text)
    if bare:
        address = bare.group(1).strip()
        return Sender(name=address, address=address)

    match = _NAMED_ADDRESS.search(text)
    if match:
        name = _strip_quotes(match.group(1).strip())
        address = match.group(2).strip()
        return Sender(name=name or address, address=address)

    return Sender(name=text, address=text)


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1].strip()
    return value


__all__ = ["UNKNOWN_SENDER", "normalize_address"]
