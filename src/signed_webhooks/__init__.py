"""Sign outbound webhooks and verify inbound ones with a shared HMAC key."""

__version__ = "0.1.0"
