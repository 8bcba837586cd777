"""Redis-backed storage for accepted webhook payloads.

Each payload is stored as a JSON document under the key
``webhook:payload:{id}``.  Writes use ``SET NX`` so a redelivered message
id keeps its first payload, which makes the store usable as an
idempotency guard.  Payloads stored from a pydantic model also record the
model class name under ``type``.

Usage
-----
    from signed_webhooks.store import WebhookPayloadStore

    store = WebhookPayloadStore.from_url("redis://localhost:6379/0")
    store.store_payload("evt_123", datetime.now(timezone.utc), '{"a": 1}')
    store.store_model("evt_124", datetime.now(timezone.utc), OrderPaid(order_id=7))
    doc = store.get("evt_123")
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, TypeVar

import redis
from pydantic import BaseModel

logger = logging.getLogger(__name__)

_KEY_PREFIX = "webhook:payload"

ModelT = TypeVar("ModelT", bound=BaseModel)


def _key(message_id: str) -> str:
    return f"{_KEY_PREFIX}:{message_id}"


class WebhookPayloadStore:
    """Synchronous Redis-backed webhook payload store.

    Parameters
    ----------
    client:
        A ``redis.Redis`` client created with ``decode_responses=True``.
    ttl_seconds:
        Expiry applied to stored payloads; ``0`` keeps them forever.
    """

    def __init__(self, client: redis.Redis, *, ttl_seconds: int = 0) -> None:
        self._client = client
        self._ttl = ttl_seconds or None

    @classmethod
    def from_url(cls, redis_url: str, *, ttl_seconds: int = 0) -> WebhookPayloadStore:
        client = redis.Redis.from_url(redis_url, decode_responses=True)
        return cls(client, ttl_seconds=ttl_seconds)

    # ── CRUD ──────────────────────────────────────────────────────

    def store_payload(self, message_id: str, received_at: datetime, payload: str) -> bool:
        """Persist the raw *payload* text for *message_id*.

        Returns ``True`` if it was written, ``False`` if a payload with the
        same id is already stored.
        """
        return self._write(message_id, received_at, payload, None)

    def store_model(self, message_id: str, received_at: datetime, payload: BaseModel) -> bool:
        """Persist a pydantic model as JSON, recording its class name as ``type``.

        Same first-delivery-wins semantics as :meth:`store_payload`.
        """
        return self._write(message_id, received_at, payload.model_dump_json(), type(payload).__name__)

    def _write(
        self,
        message_id: str,
        received_at: datetime,
        payload: str,
        type_name: str | None,
    ) -> bool:
        document: dict[str, Any] = {
            "id": message_id,
            "payload": payload,
            "received_at": received_at.isoformat(),
        }
        if type_name is not None:
            document["type"] = type_name
        created = self._client.set(_key(message_id), json.dumps(document), nx=True, ex=self._ttl)
        if created:
            logger.info("Stored payload for webhook %r", message_id)
        else:
            logger.info("Webhook %r already stored — keeping first delivery", message_id)
        return bool(created)

    def get(self, message_id: str) -> dict[str, Any] | None:
        """Return the stored document for *message_id*, or ``None``."""
        raw = self._client.get(_key(message_id))
        if raw is None:
            return None
        return json.loads(raw)

    def load_model(self, message_id: str, model: type[ModelT]) -> ModelT | None:
        """Rebuild a payload written by :meth:`store_model` as *model*."""
        document = self.get(message_id)
        if document is None:
            return None
        return model.model_validate_json(document["payload"])

    def delete(self, message_id: str) -> bool:
        """Delete the payload for *message_id*.  Returns ``True`` if it existed."""
        removed = self._client.delete(_key(message_id))
        return removed > 0

    def exists(self, message_id: str) -> bool:
        return self._client.exists(_key(message_id)) > 0

    # ── lifecycle ─────────────────────────────────────────────────

    def ping(self) -> bool:
        """Return ``True`` if Redis is reachable."""
        try:
            return self._client.ping()
        except redis.ConnectionError:
            return False

    def close(self) -> None:
        """Close the underlying Redis connection."""
        self._client.close()
