"""Provider presets and construction of engines from credentials."""

from __future__ import annotations

from typing import Any

from ..core.config import IMAP_PRESETS, EngineSettings
from ..core.interfaces import EmailProvider
from ..core.models import Credential, Endpoint, ProviderKind
from .imap_engine import ImapEngine

SUPPORTED_PROVIDER_TYPES = ("imap",)


def imap_endpoint_for(provider: ProviderKind | str) -> Endpoint | None:
    """Return the IMAP preset for a well known provider."""
    try:
        kind = ProviderKind(provider)
    except ValueError:
        return None
    return IMAP_PRESETS.get(kind)


def build_credential(
    email: str,
    secret: str,
    provider: ProviderKind | str = ProviderKind.CUSTOM,
    *,
    host: str | None = None,
    port: int | None = None,
    username: str | None = None,
) -> Credential:
    """Build a credential, filling the endpoint from presets when possible."""
    kind = ProviderKind(provider)
    preset = imap_endpoint_for(kind)
    if host is None:
        if preset is None:
            raise ValueError(f"A host is required for provider '{kind.value}'")
        endpoint = Endpoint(host=preset.host, port=port or preset.port)
    else:
        endpoint = Endpoint(host=host, port=port or 993)
    return Credential(
        email=email,
        provider=kind,
        endpoint=endpoint,
        secret=secret,
        username=username,
    )


def create_provider(
    credential: Credential,
    settings: EngineSettings | None = None,
    *,
    provider_type: str = "imap",
    **engine_options: Any,
) -> EmailProvider:
    """Create the provider implementation for ``provider_type``.

    Token based providers are served by separate collaborators.
    """
    if provider_type == "imap":
        return ImapEngine(credential, settings, **engine_options)
    if provider_type in {"oauth", "graph"}:
        raise NotImplementedError(
            f"Provider type '{provider_type}' is handled outside the IMAP engine"
        )
    raise ValueError(f"Unsupported provider type: {provider_type}")


__all__ = [
    "SUPPORTED_PROVIDER_TYPES",
    "build_credential",
    "create_provider",
    "imap_endpoint_for",
]
