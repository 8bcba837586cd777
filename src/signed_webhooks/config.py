"""Centralised application settings loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings populated from environment / .env file."""

    # Shared symmetric key (UTF-8), used by both receiver and publisher
    webhook_key: SecretStr = SecretStr("")

    # Header names (matched case-insensitively on the receiver)
    webhook_id_header: str = "webhook-id"
    webhook_signature_header: str = "webhook-signature"
    webhook_timestamp_header: str = "webhook-timestamp"
    signature_header_variant: Literal["split", "combined"] = "split"

    # Validation policy
    tolerance_seconds: int = 300
    max_payload_bytes: int = 256 * 1024
    max_signature_tokens: int = 5
    max_header_parts: int = 10
    max_message_id_chars: int = 256
    allow_empty_body: bool = False

    # Receiver
    webhook_path_prefix: str = "/webhooks"
    receiver_host: str = "0.0.0.0"
    receiver_port: int = 9000

    # Payload storage (empty URL disables it)
    redis_url: str = ""
    payload_ttl_seconds: int = 0

    # Publisher
    publisher_endpoint: str = "http://localhost:9000/webhooks/receive"
    publish_interval: float = 1.0
    publish_count: int = 0
    publisher_timeout: float = 10.0

    # Logging
    log_level: str = "INFO"

    @property
    def webhook_key_bytes(self) -> bytes:
        """Return *webhook_key* interpreted as UTF-8 bytes."""
        return self.webhook_key.get_secret_value().encode("utf-8")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


@lru_cache
def get_settings() -> Settings:
    """Return a cached *Settings* instance."""
    return Settings()
