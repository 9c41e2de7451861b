"""
Send a test event through the ingestion endpoint.

Usage:
    python scripts/simulate_event.py --token 123456789012345
    python scripts/simulate_event.py --token 123456789012345 --event checkout_completed --channel beacon
    python scripts/simulate_event.py --token 123456789012345 --test-event-code TEST12345
"""
import argparse
import asyncio
import json
import logging
import time
import uuid

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


def build_event(token: str, event_name: str, test_event_code: str | None) -> dict:
    payload = {
        "identityToken": token,
        "eventName": event_name,
        "occurrenceTime": int(time.time()),
        "eventId": f"sim-{uuid.uuid4().hex[:12]}",
        "identityFacts": {
            "email": "Jane.Doe@Example.com",
            "phone": "+1 (512) 555-0123",
            "firstName": "Jane",
            "lastName": "Doe",
            "city": "Austin",
            "region": "TX",
            "postalCode": "78701",
            "country": "US",
            "userAgent": "Mozilla/5.0 (simulate_event)",
        },
        "attributes": {"productId": "sim-sku-1", "value": 19.99, "currency": "USD"},
    }
    if test_event_code:
        payload["testEventCode"] = test_event_code
    return payload


async def send_json(base_url: str, payload: dict):
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(f"{base_url}/api/v1/track", json=payload)
        logger.info("JSON response: %s %s", resp.status_code, resp.json())
        return resp


async def send_beacon(base_url: str, payload: dict):
    """Image-beacon encoding; format=json so the outcome is readable here."""
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.get(
            f"{base_url}/api/v1/track",
            params={"d": json.dumps(payload), "format": "json"},
        )
        logger.info("Beacon response: %s %s", resp.status_code, resp.json())
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate conversion events")
    parser.add_argument("--token", required=True, help="Identity token to send under")
    parser.add_argument("--event", default="product_added_to_cart")
    parser.add_argument("--channel", default="json", choices=["json", "beacon"])
    parser.add_argument("--test-event-code")
    parser.add_argument("--base-url", default=BASE_URL)
    args = parser.parse_args()

    payload = build_event(args.token, args.event, args.test_event_code)
    logger.info("Simulating %s via %s for %s...", args.event, args.channel, args.token)

    if args.channel == "json":
        await send_json(args.base_url, payload)
    else:
        await send_beacon(args.base_url, payload)


if __name__ == "__main__":
    asyncio.run(main())
