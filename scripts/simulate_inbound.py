"""
Simulate inbound traffic against a running inbox engine.

Usage:
    python scripts/simulate_inbound.py
    python scripts/simulate_inbound.py --channel missed_call --phone "+15125559999"
    python scripts/simulate_inbound.py --channel dm --handle "fb:9911" --body "Hi, I'm Dana, 78701"
    python scripts/simulate_inbound.py --channel sms --repeat 2   # redelivery -> duplicate
"""
import argparse
import asyncio
import logging
import uuid

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


async def simulate_sms(client: httpx.AsyncClient, phone: str, body: str, to_phone: str, sid: str):
    """Twilio inbound SMS (form-encoded)."""
    payload = {
        "From": phone,
        "To": to_phone,
        "Body": body,
        "MessageSid": sid,
        "SmsStatus": "received",
        "NumMedia": "0",
    }
    resp = await client.post(f"{BASE_URL}/api/v1/webhooks/twilio/sms", data=payload)
    logger.info("SMS response: %s %s", resp.status_code, resp.text)
    return resp


async def simulate_missed_call(client: httpx.AsyncClient, phone: str, to_phone: str, sid: str):
    """Twilio call status callback for an unanswered call."""
    payload = {
        "From": phone,
        "To": to_phone,
        "CallSid": sid,
        "CallStatus": "no-answer",
        "CallDuration": "0",
    }
    resp = await client.post(f"{BASE_URL}/api/v1/webhooks/twilio/voice", data=payload)
    logger.info("Missed call response: %s %s", resp.status_code, resp.text)
    return resp


async def simulate_email(client: httpx.AsyncClient, email: str, name: str, body: str, message_id: str):
    payload = {
        "from": f'"{name}" <{email}>',
        "to": "inbox@example.com",
        "subject": "Question about pickup",
        "text": body,
        "Message-Id": message_id,
    }
    resp = await client.post(f"{BASE_URL}/api/v1/webhooks/email", json=payload)
    logger.info("Email response: %s %s", resp.status_code, resp.json())
    return resp


async def simulate_dm(client: httpx.AsyncClient, handle: str, name: str, body: str, external_id: str):
    payload = {
        "from": handle,
        "body": body,
        "source": "facebook",
        "name": name,
        "externalId": external_id,
    }
    resp = await client.post(f"{BASE_URL}/api/v1/webhooks/dm", json=payload)
    logger.info("DM response: %s %s", resp.status_code, resp.json())
    return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate inbound messages")
    parser.add_argument("--channel", default="sms", choices=["sms", "missed_call", "email", "dm"])
    parser.add_argument("--phone", default="+15125559876")
    parser.add_argument("--email", default="dana@example.com")
    parser.add_argument("--handle", default="fb:1000001")
    parser.add_argument("--name", default="Dana Whitfield")
    parser.add_argument("--body", default="Hi, I'm Dana, is Tuesday ok?")
    parser.add_argument("--to-phone", default="+15125550199")
    parser.add_argument("--repeat", type=int, default=1, help="Send the same delivery N times")
    args = parser.parse_args()

    provider_id = f"SIM{uuid.uuid4().hex[:24]}"
    logger.info("Simulating %s inbound (%d deliveries)...", args.channel, args.repeat)

    async with httpx.AsyncClient(timeout=30) as client:
        for _ in range(args.repeat):
            if args.channel == "sms":
                await simulate_sms(client, args.phone, args.body, args.to_phone, provider_id)
            elif args.channel == "missed_call":
                await simulate_missed_call(client, args.phone, args.to_phone, provider_id)
            elif args.channel == "email":
                await simulate_email(client, args.email, args.name, args.body, f"<{provider_id}@sim>")
            elif args.channel == "dm":
                await simulate_dm(client, args.handle, args.name, args.body, provider_id)


if __name__ == "__main__":
    asyncio.run(main())
