"""Reference signing helpers shared by the test modules.

The tag is computed here the naive way, over the concatenated bytes, so the
incremental implementation is checked against an independent construction.
"""

import base64
import hashlib
import hmac

KEY = b"supersecretkey000000000000000000"
NOW = 1_700_000_000


def reference_tag(key: bytes, message_id: str, timestamp: int, body: bytes) -> bytes:
    to_sign = f"{message_id}.{timestamp}.".encode("utf-8") + body
    return hmac.new(key, to_sign, hashlib.sha256).digest()


def b64(tag: bytes) -> str:
    return base64.b64encode(tag).decode("ascii")


def b64url(tag: bytes) -> str:
    return base64.urlsafe_b64encode(tag).rstrip(b"=").decode("ascii")


def signed_headers(
    message_id: str,
    timestamp: int,
    body: bytes,
    *,
    key: bytes = KEY,
    signature: str | None = None,
) -> dict[str, str]:
    """Split-variant headers for a delivery, optionally with a custom signature value."""
    if signature is None:
        signature = f"v1={b64url(reference_tag(key, message_id, timestamp, body))}"
    return {
        "webhook-id": message_id,
        "webhook-signature": signature,
        "webhook-timestamp": str(timestamp),
    }


async def chunked(*chunks: bytes):
    for chunk in chunks:
        yield chunk
