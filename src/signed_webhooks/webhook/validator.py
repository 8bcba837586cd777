"""Request-acceptance state machine for signed webhook deliveries.

A request moves through a fixed sequence of checks, cheapest first::

    Received -> HeadersChecked -> TimestampChecked -> KeyResolved
             -> BodyBounded -> SignatureChecked -> Accepted | Rejected

Every check either passes the request on or ends it with a
:class:`RejectionReason`.  Malformed input never raises; the caller always
gets a :class:`ValidationResult` back.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from starlette.requests import ClientDisconnect

from signed_webhooks.config import Settings
from signed_webhooks.webhook.buffers import ScratchBufferPool, default_pool, wipe
from signed_webhooks.webhook.clock import Clock, system_clock
from signed_webhooks.webhook.header import (
    CombinedSignatureHeader,
    HeaderNames,
    HeaderVariant,
    MalformedHeaderError,
    SignatureHeader,
    parse_signature_header,
    parse_timestamp,
)
from signed_webhooks.webhook.keys import ValidationKeyRetriever
from signed_webhooks.webhook.signature import compute_tag, decode_candidate, tags_match

logger = logging.getLogger(__name__)

HTTP_499_CLIENT_CLOSED_REQUEST = 499


class RejectionReason(str, Enum):
    """Why a delivery was refused."""

    MISSING_HEADER = "missing_header"
    IDENTIFIER_TOO_LONG = "identifier_too_long"
    MALFORMED_SIGNATURE_HEADER = "malformed_signature_header"
    TIMESTAMP_INVALID = "timestamp_invalid"
    NO_KEY_AVAILABLE = "no_key_available"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    EMPTY_PAYLOAD = "empty_payload"
    BODY_UNREADABLE = "body_unreadable"
    REQUEST_ABORTED = "request_aborted"
    SIGNATURE_MISMATCH = "signature_mismatch"

    @property
    def status_code(self) -> int:
        """HTTP status written back for this reason."""
        if self is RejectionReason.PAYLOAD_TOO_LARGE:
            return 413
        if self is RejectionReason.REQUEST_ABORTED:
            return HTTP_499_CLIENT_CLOSED_REQUEST
        return 401


@dataclass(frozen=True)
class WebhookHeader:
    """Proof that a request passed validation: its message id and timestamp."""

    id: str
    timestamp: int


@dataclass(frozen=True)
class ValidationPolicy:
    """Immutable limits shared by every request."""

    header_names: HeaderNames = field(default_factory=HeaderNames)
    variant: HeaderVariant = "split"
    tolerance_seconds: int = 300
    max_payload_bytes: int = 256 * 1024
    max_signature_tokens: int = 5
    max_header_parts: int = 10
    max_message_id_chars: int = 256
    allow_empty_body: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> ValidationPolicy:
        """Build a policy from application settings."""
        return cls(
            header_names=HeaderNames(
                id=settings.webhook_id_header,
                signature=settings.webhook_signature_header,
                timestamp=settings.webhook_timestamp_header,
            ),
            variant=settings.signature_header_variant,
            tolerance_seconds=settings.tolerance_seconds,
            max_payload_bytes=settings.max_payload_bytes,
            max_signature_tokens=settings.max_signature_tokens,
            max_header_parts=settings.max_header_parts,
            max_message_id_chars=settings.max_message_id_chars,
            allow_empty_body=settings.allow_empty_body,
        )


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of :meth:`WebhookValidator.validate`.

    On acceptance *header* is set and *body* holds the exact bytes that
    were read, so they can be handed on to downstream consumers.
    """

    reason: RejectionReason | None = None
    header: WebhookHeader | None = None
    body: bytes = b""

    @property
    def accepted(self) -> bool:
        return self.reason is None

    @property
    def status_code(self) -> int:
        return 200 if self.reason is None else self.reason.status_code


class WebhookValidator:
    """Verify webhook deliveries signed with a shared symmetric key.

    The validator keeps no per-request state, so one instance can serve
    any number of concurrent requests.

    Parameters
    ----------
    key_retriever:
        Capability returning the key for a given request context.
    policy:
        Header names and limits.
    clock:
        Time source for the replay window; defaults to ``time.time``.
    pool:
        Scratch buffer pool for body and key material.
    """

    def __init__(
        self,
        key_retriever: ValidationKeyRetriever,
        *,
        policy: ValidationPolicy | None = None,
        clock: Clock = system_clock,
        pool: ScratchBufferPool = default_pool,
    ) -> None:
        self._key_retriever = key_retriever
        self._policy = policy or ValidationPolicy()
        self._clock = clock
        self._pool = pool

    @property
    def policy(self) -> ValidationPolicy:
        return self._policy

    # ── Public API ──────────────────────────────────────────────────

    async def validate(
        self,
        headers: Mapping[str, str],
        body: AsyncIterable[bytes] | bytes,
        *,
        content_length: int | None = None,
        context: Any = None,
        abort: asyncio.Event | None = None,
    ) -> ValidationResult:
        """Run a request through every check and return the outcome.

        Parameters
        ----------
        headers:
            Request headers.  Names are matched case-insensitively and
            repeated headers are joined with commas, so several
            signature headers act as one list of candidates.
        body:
            The request body, either as raw bytes or as an async stream of
            chunks.  A stream may raise
            :class:`starlette.requests.ClientDisconnect` to signal that the
            client went away.
        content_length:
            Declared body size, if the client sent one.
        context:
            Passed through to the key retriever.
        abort:
            Optional event; setting it while the body is being read ends
            validation with :attr:`RejectionReason.REQUEST_ABORTED`.
        """
        policy = self._policy
        names = policy.header_names
        lowered = fold_headers(_header_pairs(headers))

        # 1. Headers
        message_id = lowered.get(names.id.lower()) or ""
        signature_value = lowered.get(names.signature.lower()) or ""
        timestamp_value = lowered.get(names.timestamp.lower()) or ""

        if not message_id.strip() or not signature_value.strip():
            return self._reject(RejectionReason.MISSING_HEADER)
        if len(message_id) > policy.max_message_id_chars:
            return self._reject(RejectionReason.IDENTIFIER_TOO_LONG)
        if policy.variant == "split" and not timestamp_value.strip():
            return self._reject(RejectionReason.MISSING_HEADER, message_id)

        try:
            parsed = parse_signature_header(
                signature_value,
                max_parts=policy.max_header_parts,
                max_candidates=policy.max_signature_tokens,
            )
        except MalformedHeaderError as exc:
            logger.debug("Signature header refused: %s", exc)
            return self._reject(RejectionReason.MALFORMED_SIGNATURE_HEADER, message_id)

        if not parsed.candidates:
            return self._reject(RejectionReason.MALFORMED_SIGNATURE_HEADER, message_id)

        # 2. Timestamp
        if policy.variant == "combined":
            if not isinstance(parsed, CombinedSignatureHeader):
                return self._reject(RejectionReason.MALFORMED_SIGNATURE_HEADER, message_id)
            timestamp: int | None = parsed.timestamp
        else:
            timestamp = parse_timestamp(timestamp_value)

        if timestamp is None or not self._within_tolerance(timestamp):
            return self._reject(RejectionReason.TIMESTAMP_INVALID, message_id)

        # 3. Key, before paying for the body read
        try:
            key = self._key_retriever.get_key(context)
        except Exception:
            logger.warning("Key lookup failed for webhook %r", message_id, exc_info=True)
            key = None
        if not key:
            return self._reject(RejectionReason.NO_KEY_AVAILABLE, message_id)

        # 4. Body
        if content_length is not None and content_length > policy.max_payload_bytes:
            logger.warning(
                "Webhook rejected: %s (id=%r, content-length=%d)",
                RejectionReason.PAYLOAD_TOO_LARGE.value,
                message_id,
                content_length,
            )
            return ValidationResult(reason=RejectionReason.PAYLOAD_TOO_LARGE)

        with self._pool.lease() as buffer:
            reason = await self._read_body(body, buffer, abort)
            if reason is not None:
                return self._reject(reason, message_id)
            if not buffer and not policy.allow_empty_body:
                return self._reject(RejectionReason.EMPTY_PAYLOAD, message_id)

            # 5. Signature
            if not self._verify(key, message_id, timestamp, buffer, parsed):
                return self._reject(RejectionReason.SIGNATURE_MISMATCH, message_id)

            payload = bytes(buffer)

        logger.debug("Webhook %r accepted (t=%d, %d bytes)", message_id, timestamp, len(payload))
        return ValidationResult(
            header=WebhookHeader(id=message_id, timestamp=timestamp),
            body=payload,
        )

    # ── Stages ──────────────────────────────────────────────────────

    def _within_tolerance(self, timestamp: int) -> bool:
        now = self._clock()
        tolerance = self._policy.tolerance_seconds
        return now - tolerance <= timestamp <= now + tolerance

    async def _read_body(
        self,
        body: AsyncIterable[bytes] | bytes,
        buffer: bytearray,
        abort: asyncio.Event | None,
    ) -> RejectionReason | None:
        """Copy the body into *buffer* without ever exceeding the ceiling."""
        limit = self._policy.max_payload_bytes
        iterator = _iterate(body)
        try:
            while True:
                if abort is not None and abort.is_set():
                    return RejectionReason.REQUEST_ABORTED
                try:
                    chunk = await _next_chunk(iterator, abort)
                except StopAsyncIteration:
                    return None
                if len(buffer) + len(chunk) > limit:
                    return RejectionReason.PAYLOAD_TOO_LARGE
                buffer += chunk
        except ClientDisconnect:
            return RejectionReason.REQUEST_ABORTED
        except Exception:
            logger.warning("Failed to read webhook body", exc_info=True)
            return RejectionReason.BODY_UNREADABLE
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _verify(
        self,
        key: bytes,
        message_id: str,
        timestamp: int,
        body: bytearray,
        parsed: SignatureHeader,
    ) -> bool:
        """Return ``True`` when any candidate equals the expected tag."""
        try:
            expected = compute_tag(key, message_id, timestamp, body, pool=self._pool)
        except UnicodeEncodeError:
            return False

        try:
            return _any_candidate_matches(expected, parsed.candidates)
        finally:
            wipe(expected)

    # ── Helpers ─────────────────────────────────────────────────────

    def _reject(self, reason: RejectionReason, message_id: str | None = None) -> ValidationResult:
        logger.warning("Webhook rejected: %s (id=%r)", reason.value, message_id)
        return ValidationResult(reason=reason)


def fold_headers(pairs: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Lower-case header names and join repeated values with ``,``."""
    folded: dict[str, str] = {}
    for name, value in pairs:
        name = str(name).lower()
        if name in folded:
            folded[name] = f"{folded[name]},{value}"
        else:
            folded[name] = value
    return folded


def _header_pairs(headers: Mapping[str, str]) -> Iterable[tuple[str, str]]:
    # httpx.Headers merges repeats in items(); starlette Headers.items() keeps them
    multi_items = getattr(headers, "multi_items", None)
    if multi_items is not None:
        return multi_items()
    return headers.items()


def _any_candidate_matches(expected: bytearray, candidates: Iterable[str]) -> bool:
    for value in candidates:
        decoded = decode_candidate(value)
        if decoded is None:
            continue
        try:
            if tags_match(expected, decoded):
                return True
        finally:
            wipe(decoded)
    return False


async def _single_chunk(data: bytes) -> AsyncIterator[bytes]:
    yield data


def _iterate(body: AsyncIterable[bytes] | bytes) -> AsyncIterator[bytes]:
    if isinstance(body, (bytes, bytearray, memoryview)):
        return _single_chunk(bytes(body))
    return body.__aiter__()


async def _next_chunk(iterator: AsyncIterator[bytes], abort: asyncio.Event | None) -> bytes:
    """Await the next chunk, giving up as soon as *abort* is set."""
    if abort is None:
        return await iterator.__anext__()

    read = asyncio.ensure_future(iterator.__anext__())
    waiter = asyncio.ensure_future(abort.wait())
    try:
        done, _ = await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (read, waiter):
            if not task.done():
                task.cancel()
        await asyncio.wait({read, waiter})

    if read in done:
        return read.result()
    if not read.cancelled():
        read.exception()
    raise ClientDisconnect()
