"""Sign and POST a checkout.session.completed event to the webhook service.

Use `--repeat` to drill duplicate delivery: every copy carries the same event
id and payment reference, so the balance should move only once.
"""

import argparse
import hashlib
import hmac
import json
import os
import time
from uuid import uuid4

import httpx


def sign(payload: str, secret: str, timestamp: int) -> str:
    """Build a `Stripe-Signature` header value for `payload`."""

    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256)
    return f"t={timestamp},v1={digest.hexdigest()}"


def build_event(user_id: str, credits: int, package_id: str, event_id: str, payment_status: str) -> dict:
    session_id = f"cs_test_{uuid4().hex[:24]}"
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "created": int(time.time()),
        "livemode": False,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": payment_status,
                "payment_intent": f"pi_test_{uuid4().hex[:24]}",
                "amount_total": credits * 100,
                "currency": "usd",
                "metadata": {"user_id": user_id, "package_id": package_id, "credits": str(credits)},
            }
        },
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Send a signed test webhook.")
    parser.add_argument("--webhook-url", default="http://localhost:8002/credits/webhook")
    parser.add_argument("--secret", default=os.getenv("STRIPE_WEBHOOK_SECRET", ""))
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--credits", type=int, default=5)
    parser.add_argument("--package-id", default="small")
    parser.add_argument("--event-id", default=None)
    parser.add_argument("--payment-status", default="paid")
    parser.add_argument("--repeat", type=int, default=1)
    parser.add_argument("--bad-signature", action="store_true")
    args = parser.parse_args()

    if not args.secret:
        raise SystemExit("Provide --secret or STRIPE_WEBHOOK_SECRET")

    event = build_event(
        args.user_id,
        args.credits,
        args.package_id,
        args.event_id or f"evt_test_{uuid4().hex[:24]}",
        args.payment_status,
    )
    payload = json.dumps(event)
    secret = "whsec_wrong" if args.bad_signature else args.secret
    with httpx.Client(timeout=10.0) as client:
        for attempt in range(1, args.repeat + 1):
            header = sign(payload, secret, int(time.time()))
            resp = client.post(
                args.webhook_url,
                content=payload.encode("utf-8"),
                headers={"Stripe-Signature": header, "Content-Type": "application/json"},
            )
            print(f"attempt={attempt} status={resp.status_code} body={resp.text}")


if __name__ == "__main__":
    main()
