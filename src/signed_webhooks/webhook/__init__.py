"""
Signed webhook protocol: HMAC-SHA256 over ``{id}.{timestamp}.{body}``.

Components:
- signature.py: tag computation, candidate decoding, constant-time compare
- header.py: signature header grammar (split / combined variants)
- validator.py: request-acceptance state machine
- middleware.py: ASGI integration for receivers
- publisher.py: signer and httpx-based publisher
"""

from signed_webhooks.webhook.header import HeaderNames
from signed_webhooks.webhook.keys import StaticKeyRetriever
from signed_webhooks.webhook.middleware import WebhookValidationMiddleware, get_webhook_header
from signed_webhooks.webhook.publisher import (
    InvalidArgumentError,
    SignedWebhook,
    WebhookPublisher,
    WebhookSigner,
)
from signed_webhooks.webhook.validator import (
    RejectionReason,
    ValidationPolicy,
    ValidationResult,
    WebhookHeader,
    WebhookValidator,
)

__all__ = [
    "HeaderNames",
    "InvalidArgumentError",
    "RejectionReason",
    "SignedWebhook",
    "StaticKeyRetriever",
    "ValidationPolicy",
    "ValidationResult",
    "WebhookHeader",
    "WebhookPublisher",
    "WebhookSigner",
    "WebhookValidationMiddleware",
    "WebhookValidator",
    "get_webhook_header",
]
