"""HMAC-SHA256 tag construction shared by the signer and the validator.

The bytes-to-sign are ``{id}.{timestamp}.{body}``: the message id and the
decimal unix timestamp as UTF-8 text, followed by the raw body exactly as
sent on the wire.  The prefix and the body are fed to the HMAC one after
the other, so a large body is never copied into a concatenated string.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac

from signed_webhooks.webhook.buffers import ScratchBufferPool, default_pool, wipe

TAG_LENGTH = 32  # HMAC-SHA256
MAX_CANDIDATE_CHARS = 88  # generous upper bound for 32 bytes of base64


def compute_tag(
    key: bytes | bytearray,
    message_id: str,
    timestamp: int,
    body: bytes | bytearray | memoryview,
    *,
    pool: ScratchBufferPool = default_pool,
) -> bytearray:
    """Return the 32-byte authentication tag for one delivery.

    Parameters
    ----------
    key:
        Shared secret.  Only borrowed for the duration of the call.
    message_id:
        Sender-chosen message identifier.
    timestamp:
        Unix timestamp in seconds, as declared by the sender.
    body:
        Raw payload bytes.

    Returns
    -------
    bytearray
        The tag.  The caller owns it and should :func:`wipe` it once done.

    Raises
    ------
    UnicodeEncodeError
        If *message_id* cannot be encoded as UTF-8.
    """
    with pool.lease() as key_buf, pool.lease() as prefix_buf:
        key_buf += key
        prefix_buf += message_id.encode("utf-8")
        prefix_buf += b"."
        prefix_buf += str(int(timestamp)).encode("ascii")
        prefix_buf += b"."

        mac = hmac.new(key_buf, digestmod=hashlib.sha256)
        mac.update(prefix_buf)
        mac.update(body)
        return bytearray(mac.digest())


def encode_tag(tag: bytes | bytearray) -> str:
    """Encode *tag* as unpadded base64url, the form senders emit."""
    return base64.urlsafe_b64encode(tag).rstrip(b"=").decode("ascii")


def decode_candidate(value: str) -> bytearray | None:
    """Decode a ``v1`` candidate written as base64url or standard base64.

    Padding is optional for both alphabets.  Returns ``None`` for values
    that are empty, suspiciously long or not valid base64 in either form.
    """
    if not value or len(value) > MAX_CANDIDATE_CHARS:
        return None

    normalized = value.replace("-", "+").replace("_", "/").rstrip("=")
    if len(normalized) % 4 == 1:
        return None
    normalized += "=" * (-len(normalized) % 4)

    try:
        return bytearray(base64.b64decode(normalized, validate=True))
    except (binascii.Error, ValueError):
        return None


def tags_match(expected: bytes | bytearray, candidate: bytes | bytearray) -> bool:
    """Compare two tags in constant time.

    Candidates of the wrong length never match.
    """
    if len(candidate) != TAG_LENGTH or len(expected) != TAG_LENGTH:
        return False
    return hmac.compare_digest(expected, candidate)


__all__ = [
    "MAX_CANDIDATE_CHARS",
    "TAG_LENGTH",
    "compute_tag",
    "decode_candidate",
    "encode_tag",
    "tags_match",
    "wipe",
]
