"""Publisher entry-point — sends a signed demo webhook on a fixed interval.

Each iteration POSTs ``{"id": "<uuid>"}`` to ``PUBLISHER_ENDPOINT`` with a
fresh message id.  Failed deliveries are logged and not retried.

Exit codes:
    0 — stopped (interrupt or ``PUBLISH_COUNT`` reached)
    1 — configuration error (logged)
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid

import httpx

from signed_webhooks.config import Settings, get_settings
from signed_webhooks.startup import setup_logging
from signed_webhooks.webhook.publisher import WebhookPublisher

logger = logging.getLogger(__name__)


def demo_payload() -> tuple[str, bytes]:
    """Return a fresh ``(message_id, body)`` pair."""
    message_id = str(uuid.uuid4())
    body = json.dumps({"id": str(uuid.uuid4())}).encode("utf-8")
    return message_id, body


def run(settings: Settings, publisher: WebhookPublisher) -> int:
    """Publish until interrupted or ``publish_count`` deliveries were attempted.

    Returns the number of deliveries that got a 2xx answer.
    """
    endpoint = settings.publisher_endpoint
    limit = settings.publish_count
    attempted = 0
    delivered = 0

    logger.info("Publishing to %s every %.1fs", endpoint, settings.publish_interval)

    while not limit or attempted < limit:
        message_id, body = demo_payload()
        attempted += 1
        try:
            response = publisher.publish(endpoint, message_id, body)
        except httpx.TransportError as exc:
            logger.warning("Delivery of %s failed: %s", message_id, exc)
        else:
            if response.is_success:
                delivered += 1
            else:
                logger.warning("Webhook %s refused with %d", message_id, response.status_code)

        if not limit or attempted < limit:
            time.sleep(settings.publish_interval)

    return delivered


def main() -> None:
    """CLI entry-point."""
    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        publisher = WebhookPublisher.from_settings(settings)
    except RuntimeError:
        logger.exception("Cannot start publisher")
        sys.exit(1)

    with publisher:
        try:
            delivered = run(settings, publisher)
        except KeyboardInterrupt:
            logger.info("Shutdown signal received")
            return

    logger.info("Publisher finished (%d delivered)", delivered)


if __name__ == "__main__":
    main()
