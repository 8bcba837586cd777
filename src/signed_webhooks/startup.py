"""Receiver entry-point — settings, logging, validator, storage, and serve."""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI

from signed_webhooks.config import Settings, get_settings
from signed_webhooks.store import WebhookPayloadStore
from signed_webhooks.webhook.consumer import create_receiver_app
from signed_webhooks.webhook.keys import StaticKeyRetriever
from signed_webhooks.webhook.validator import ValidationPolicy, WebhookValidator

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    """Configure root logger with a human-friendly format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _build_store(settings: Settings) -> WebhookPayloadStore | None:
    """Connect the payload store when ``REDIS_URL`` is configured."""
    if not settings.redis_url:
        logger.info("REDIS_URL not set — accepted payloads will not be stored")
        return None

    store = WebhookPayloadStore.from_url(
        settings.redis_url,
        ttl_seconds=settings.payload_ttl_seconds,
    )
    if not store.ping():
        logger.critical("Cannot connect to Redis at %s. Exiting.", settings.redis_url)
        sys.exit(1)
    logger.info("Payload store connected (%s)", settings.redis_url)
    return store


def build_app(settings: Settings) -> FastAPI:
    """Wire the validator and the optional store into a receiver app."""
    if not settings.webhook_key.get_secret_value():
        logger.warning("WEBHOOK_KEY is empty — every delivery will be rejected")

    validator = WebhookValidator(
        StaticKeyRetriever.from_settings(settings),
        policy=ValidationPolicy.from_settings(settings),
    )
    return create_receiver_app(
        validator=validator,
        store=_build_store(settings),
        path_prefix=settings.webhook_path_prefix,
    )


def main() -> None:
    """Entry-point: build the receiver and serve it with uvicorn."""
    settings = get_settings()
    setup_logging(settings.log_level)

    logger.info("Signed webhooks receiver starting …")
    app = build_app(settings)

    logger.info(
        "Starting webhook receiver on %s:%d (protected prefix %s)",
        settings.receiver_host,
        settings.receiver_port,
        settings.webhook_path_prefix,
    )
    uvicorn.run(
        app,
        host=settings.receiver_host,
        port=settings.receiver_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
