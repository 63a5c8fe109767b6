#!/usr/bin/env python3
"""Script to send a signed test notification to the Otodom webhook endpoint.

Usage:
    python scripts/send_test_webhook.py <transaction_id> <object_id> [event_type]

Signs the payload with OTODOM_WEBHOOK_SECRET from the .env file (when set)
and posts it to {PUBLIC_BASE_URL}/api/webhooks/otodom.
"""

import asyncio
import sys
from pathlib import Path

import httpx

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from rental_sync.config import get_settings
from rental_sync.partners.signature import compute_signature
from rental_sync.partners.webhook_models import EVENT_POSTED_SUCCESS, PUBLISH_FLOW


async def send_test_webhook(transaction_id: str, object_id: str, event_type: str) -> bool:
    """Post one notification.

    Returns:
        True if the endpoint acknowledged it, False otherwise
    """
    settings = get_settings()
    webhook_url = f"{settings.public_base_url.rstrip('/')}/api/webhooks/otodom"

    payload = {
        "flow": PUBLISH_FLOW,
        "event_type": event_type,
        "object_id": object_id,
        "transaction_id": transaction_id,
    }
    headers = {}
    if settings.otodom_webhook_secret:
        headers["x-signature"] = compute_signature(
            object_id, transaction_id, settings.otodom_webhook_secret
        )
    else:
        print("OTODOM_WEBHOOK_SECRET is not set, sending an unsigned notification")

    print(f"Webhook URL: {webhook_url}")
    print(f"Payload:     {payload}")

    async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
        try:
            response = await client.post(webhook_url, json=payload, headers=headers)
        except httpx.RequestError as e:
            print(f"Request failed: {e}")
            return False

    print(f"Response:    HTTP {response.status_code} {response.text}")
    return response.is_success


def main():
    """Entry point."""
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(2)

    event_type = sys.argv[3] if len(sys.argv) > 3 else EVENT_POSTED_SUCCESS
    success = asyncio.run(send_test_webhook(sys.argv[1], sys.argv[2], event_type))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
