"""Summarize recent webhook processing activity from the processing log."""

import argparse
import os
from collections import Counter, defaultdict

import httpx

EVENT_TYPES = (
    "checkout.session.create",
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "checkout.session.async_payment_failed",
    "signature_rejected",
    "malformed_payload",
)


def print_summary(event_type: str, rows: list[dict]) -> None:
    outcomes = Counter(f"{row['status']}:{row['message']}" for row in rows)
    latest = rows[0]["created_at"] if rows else "-"
    print(f"{event_type}: {len(rows)} recent (latest {latest})")
    for outcome, count in outcomes.most_common():
        print(f"  {outcome:<40} {count}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Print recent processing-log activity per event type.")
    parser.add_argument("--ledger-url", default="http://localhost:8004")
    parser.add_argument("--api-key", default=os.getenv("API_KEY", ""))
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--user-id", default=None, help="Show one user's entries instead of per-type totals")
    parser.add_argument(
        "--since-hours",
        type=int,
        default=None,
        help="Only count entries from the last N hours, grouped by whatever event types appear",
    )
    args = parser.parse_args()

    headers = {"X-API-Key": args.api_key}
    url = f"{args.ledger_url}/ops/processing-log"
    with httpx.Client(timeout=10.0, headers=headers) as client:
        if args.user_id:
            resp = client.get(url, params={"user_id": args.user_id, "limit": args.limit})
            resp.raise_for_status()
            for row in resp.json():
                print(
                    f"{row['created_at']} {row['event_type']:<42} {row['status']:<10} "
                    f"{row['message']:<24} amount={row.get('amount')}"
                )
            return

        if args.since_hours:
            resp = client.get(url, params={"since_hours": args.since_hours, "limit": args.limit})
            resp.raise_for_status()
            by_type: dict[str, list[dict]] = defaultdict(list)
            for row in resp.json():
                by_type[row["event_type"]].append(row)
            print(f"last {args.since_hours}h")
            for event_type in sorted(by_type):
                print_summary(event_type, by_type[event_type])
            return

        for event_type in EVENT_TYPES:
            resp = client.get(url, params={"event_type": event_type, "limit": args.limit})
            resp.raise_for_status()
            print_summary(event_type, resp.json())


if __name__ == "__main__":
    main()
