"""Signing and delivery of outbound webhooks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from signed_webhooks.config import Settings
from signed_webhooks.webhook.clock import Clock, system_clock
from signed_webhooks.webhook.header import HeaderNames, HeaderVariant, format_signature_header
from signed_webhooks.webhook.keys import PublisherKeyRetriever, StaticKeyRetriever
from signed_webhooks.webhook.signature import compute_tag, encode_tag, wipe

logger = logging.getLogger(__name__)


class InvalidArgumentError(ValueError):
    """Raised when a webhook cannot be signed with the given arguments."""


@dataclass(frozen=True)
class SignedWebhook:
    """Everything a transport needs to deliver one webhook."""

    url: str
    headers: dict[str, str]
    body: bytes
    signature: str


class WebhookSigner:
    """Produce the headers that let a receiver authenticate a delivery.

    Parameters
    ----------
    key_retriever:
        Returns the active signing key.
    header_names:
        Names for the id, signature and timestamp headers.
    variant:
        ``"split"`` sends ``v1=<tag>``; ``"combined"`` also embeds
        ``t=<timestamp>`` in the signature header.
    max_message_id_chars:
        Upper bound on the message id length.
    """

    def __init__(
        self,
        key_retriever: PublisherKeyRetriever,
        *,
        header_names: HeaderNames | None = None,
        variant: HeaderVariant = "split",
        max_message_id_chars: int = 256,
    ) -> None:
        self._key_retriever = key_retriever
        self._names = header_names or HeaderNames()
        self._variant = variant
        self._max_message_id_chars = max_message_id_chars

    def sign(
        self,
        endpoint: str | httpx.URL,
        message_id: str,
        payload: bytes,
        timestamp: int,
    ) -> SignedWebhook:
        """Sign *payload* for delivery to *endpoint*.

        No I/O happens here besides reading the key.

        Raises
        ------
        InvalidArgumentError
            Bad endpoint or message id, or no signing key.
        """
        url = self._check_endpoint(endpoint)
        self._check_message_id(message_id)

        key = self._key_retriever.get_key()
        if not key:
            raise InvalidArgumentError("no signing key available")

        tag = compute_tag(key, message_id, timestamp, payload)
        try:
            signature = encode_tag(tag)
        finally:
            wipe(tag)

        headers = {
            self._names.id: message_id,
            self._names.signature: format_signature_header(
                [signature], timestamp=timestamp, variant=self._variant
            ),
            self._names.timestamp: str(int(timestamp)),
        }
        return SignedWebhook(url=url, headers=headers, body=bytes(payload), signature=signature)

    # ── Argument checks ─────────────────────────────────────────────

    @staticmethod
    def _check_endpoint(endpoint: str | httpx.URL) -> str:
        try:
            url = httpx.URL(endpoint)
        except (httpx.InvalidURL, TypeError) as exc:
            raise InvalidArgumentError(f"invalid endpoint: {exc}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise InvalidArgumentError("endpoint must be an absolute http(s) URL")
        return str(url)

    def _check_message_id(self, message_id: str) -> None:
        if not message_id or not message_id.strip():
            raise InvalidArgumentError("message id required")
        if len(message_id) > self._max_message_id_chars:
            raise InvalidArgumentError(
                f"message id too long (max {self._max_message_id_chars})"
            )
        try:
            message_id.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise InvalidArgumentError("message id is not valid UTF-8 text") from exc


class WebhookPublisher:
    """POST signed webhooks with *httpx*.

    Retries, backoff and queueing are left to the caller; whatever the
    transport returns (or raises) is handed back untouched.

    Parameters
    ----------
    signer:
        Signer used for every delivery.
    client:
        HTTP client.  When omitted one is created and closed by
        :meth:`close`.
    clock:
        Time source for the signing timestamp.
    timeout:
        Timeout in seconds for a client created here.
    """

    def __init__(
        self,
        signer: WebhookSigner,
        *,
        client: httpx.Client | None = None,
        clock: Clock = system_clock,
        timeout: float = 10.0,
    ) -> None:
        self._signer = signer
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout))
        self._clock = clock

    # ── Factory ─────────────────────────────────────────────────────

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> WebhookPublisher:
        """Build a publisher from application settings."""
        if not settings.webhook_key.get_secret_value():
            raise RuntimeError(
                "WEBHOOK_KEY is not set. "
                "Put the shared webhook secret in the environment or the .env file."
            )
        signer = WebhookSigner(
            StaticKeyRetriever.from_settings(settings),
            header_names=HeaderNames(
                id=settings.webhook_id_header,
                signature=settings.webhook_signature_header,
                timestamp=settings.webhook_timestamp_header,
            ),
            variant=settings.signature_header_variant,
            max_message_id_chars=settings.max_message_id_chars,
        )
        kwargs.setdefault("timeout", settings.publisher_timeout)
        return cls(signer, **kwargs)

    # ── Public API ──────────────────────────────────────────────────

    def publish(
        self,
        endpoint: str | httpx.URL,
        message_id: str,
        payload: bytes,
        *,
        content_type: str = "application/json",
    ) -> httpx.Response:
        """Sign *payload* with the current time and POST it to *endpoint*.

        Raises
        ------
        InvalidArgumentError
            If the webhook cannot be signed.
        httpx.TransportError
            If the request never got a response.
        """
        timestamp = int(self._clock())
        signed = self._signer.sign(endpoint, message_id, payload, timestamp)

        # httpx encodes str header values as ASCII; send the id as UTF-8
        headers = {name: value.encode("utf-8") for name, value in signed.headers.items()}
        headers["Content-Type"] = content_type.encode("utf-8")

        logger.debug("POST %s (id=%r, %d bytes)", signed.url, message_id, len(signed.body))

        response = self._client.post(signed.url, content=signed.body, headers=headers)
        logger.info("Webhook %r delivered → %d", message_id, response.status_code)
        return response

    # ── lifecycle ──────────────────────────────────────────────────

    def close(self) -> None:
        """Close the HTTP client if this publisher created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> WebhookPublisher:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
