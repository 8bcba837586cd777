"""FastAPI-based HTTP server that receives signed webhook deliveries."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from signed_webhooks.store import WebhookPayloadStore
from signed_webhooks.webhook.middleware import (
    WebhookValidationMiddleware,
    get_webhook_header,
    normalize_prefix,
)
from signed_webhooks.webhook.validator import WebhookValidator

logger = logging.getLogger(__name__)


def create_receiver_app(
    *,
    validator: WebhookValidator,
    store: WebhookPayloadStore | None = None,
    path_prefix: str = "/webhooks",
) -> FastAPI:
    """Build and return a :class:`FastAPI` application for receiving webhooks.

    Parameters
    ----------
    validator:
        Validator guarding every route under *path_prefix*.
    store:
        Optional payload store.  When provided, accepted payloads are
        persisted keyed by their message id.
    path_prefix:
        Route prefix of the protected webhook endpoints, such as
        ``"/webhooks"``.  A bare ``"/"`` raises :class:`ValueError`.
    """
    prefix = normalize_prefix(path_prefix)
    app = FastAPI(title="Signed Webhooks — Receiver")

    # ── Signature validation for the webhook routes ───────────────
    app.add_middleware(
        WebhookValidationMiddleware,
        validator=validator,
        path_prefix=prefix,
    )

    app.state.store = store

    @app.get("/", response_class=PlainTextResponse)
    async def index() -> str:
        return "Running!"

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple liveness probe."""
        return {"status": "ok"}

    @app.post(f"{prefix}/receive")
    async def receive_webhook(request: Request) -> dict[str, Any]:
        """Handle a delivery that already passed signature validation."""
        raw_body = await request.body()

        header = get_webhook_header(request)
        if header is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Could not parse webhook.",
            )

        logger.info(
            "Webhook received: id=%r t=%d (%d bytes)",
            header.id,
            header.timestamp,
            len(raw_body),
        )

        stored = False
        payload_store: WebhookPayloadStore | None = request.app.state.store
        if payload_store is not None:
            stored = await run_in_threadpool(
                payload_store.store_payload,
                header.id,
                datetime.now(timezone.utc),
                raw_body.decode("utf-8", errors="replace"),
            )

        return {
            "received": True,
            "id": header.id,
            "length": len(raw_body),
            "stored": stored,
        }

    return app
