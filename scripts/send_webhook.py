"""Sign and send a single webhook, printing the receiver's answer.

Usage:
    WEBHOOK_KEY=secret python scripts/send_webhook.py http://localhost:9000/webhooks/receive '{"a": 1}'
"""

import os
import sys
import uuid

# Allow running from the repo root without installing the package
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import httpx

from signed_webhooks.config import get_settings
from signed_webhooks.webhook.publisher import InvalidArgumentError, WebhookPublisher


def main() -> None:
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)

    endpoint = sys.argv[1]
    body = (sys.argv[2] if len(sys.argv) > 2 else "{}").encode("utf-8")
    message_id = sys.argv[3] if len(sys.argv) > 3 else f"msg_{uuid.uuid4().hex}"

    try:
        publisher = WebhookPublisher.from_settings(get_settings())
    except RuntimeError as exc:
        print("ERROR:", exc)
        sys.exit(1)

    with publisher:
        try:
            response = publisher.publish(endpoint, message_id, body)
        except InvalidArgumentError as exc:
            print("ERROR:", exc)
            sys.exit(1)
        except httpx.TransportError as exc:
            print("ERROR: delivery failed:", exc)
            sys.exit(1)

    print(f"  {message_id} → {response.status_code}")
    print(response.text)


if __name__ == "__main__":
    main()
