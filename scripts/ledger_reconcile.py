"""Fetch and print the credit ledger reconciliation report JSON."""

import argparse
import json
import os

import httpx


def main() -> None:
    """CLI entrypoint for reconciliation checks."""

    parser = argparse.ArgumentParser(description="Fetch ledger reconciliation report endpoint.")
    parser.add_argument("--ledger-url", default="http://localhost:8004")
    parser.add_argument("--api-key", default=os.getenv("API_KEY", ""))
    parser.add_argument("--user-id", default=None, help="Reconcile a single user instead of all accounts")
    parser.add_argument("--limit", type=int, default=1000)
    args = parser.parse_args()

    headers = {"X-API-Key": args.api_key}
    if args.user_id:
        resp = httpx.get(f"{args.ledger_url}/reconciliation/{args.user_id}", headers=headers, timeout=10.0)
    else:
        resp = httpx.get(
            f"{args.ledger_url}/reconciliation",
            params={"limit": args.limit},
            headers=headers,
            timeout=10.0,
        )
    resp.raise_for_status()
    report = resp.json()
    print(json.dumps(report, indent=2))
    if report.get("imbalanced_count") or report.get("balanced") is False:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
