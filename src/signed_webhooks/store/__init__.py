from signed_webhooks.store.payload_store import WebhookPayloadStore

__all__ = ["WebhookPayloadStore"]
