"""Credit a purchase whose webhook never arrived.

The payment reference is passed through as the ledger's external reference,
so running this twice (or the webhook arriving late) credits at most once.
"""

import argparse
import json
import os

import httpx


def main() -> None:
    parser = argparse.ArgumentParser(description="Manually credit a paid purchase.")
    parser.add_argument("--ledger-url", default="http://localhost:8004")
    parser.add_argument("--api-key", default=os.getenv("API_KEY", ""))
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--credits", required=True, help="Credit amount, e.g. 15")
    parser.add_argument("--payment-ref", required=True, help="Payment intent id from the processor dashboard")
    parser.add_argument("--description", default=None)
    args = parser.parse_args()

    body = {
        "user_id": args.user_id,
        "amount": args.credits,
        "kind": "purchase",
        "description": args.description or f"Purchased {args.credits} credits (manual fix)",
        "external_ref": args.payment_ref,
    }
    resp = httpx.post(
        f"{args.ledger_url}/internal/credit",
        json=body,
        headers={"X-API-Key": args.api_key},
        timeout=10.0,
    )
    if resp.status_code == 409:
        print(f"Payment {args.payment_ref} was already credited; nothing to do.")
        print(json.dumps(resp.json(), indent=2))
        return
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
