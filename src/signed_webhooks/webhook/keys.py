"""Key retrieval capabilities.

The validator asks for a key with the request at hand, the publisher asks
without arguments.  Implementations must be safe to call from concurrent
requests; the ones below are immutable after construction.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from signed_webhooks.config import Settings


@runtime_checkable
class ValidationKeyRetriever(Protocol):
    """Return the key for verifying the request described by *context*.

    An empty result means no key is available and the request is rejected.
    """

    def get_key(self, context: Any) -> bytes: ...


@runtime_checkable
class PublisherKeyRetriever(Protocol):
    """Return the active signing key of a publisher."""

    def get_key(self) -> bytes: ...


class StaticKeyRetriever:
    """Serve one fixed key to publishers and validators alike."""

    def __init__(self, key: bytes | str) -> None:
        if isinstance(key, str):
            key = key.encode("utf-8")
        self._key = bytes(key)

    def get_key(self, context: Any = None) -> bytes:
        return self._key

    def __repr__(self) -> str:
        return f"{type(self).__name__}(<{len(self._key)} bytes>)"

    @classmethod
    def from_settings(cls, settings: Settings) -> StaticKeyRetriever:
        """Interpret ``WEBHOOK_KEY`` as UTF-8 bytes."""
        return cls(settings.webhook_key_bytes)
