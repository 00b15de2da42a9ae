"""Delete processing-log entries older than the retention window."""

import argparse

from creditline.common.config import settings
from creditline.common.db import make_session_factory
from creditline.common.logging import configure_logging
from creditline.services.processing_log.service import ProcessingLog


def main() -> None:
    parser = argparse.ArgumentParser(description="Prune old processing-log entries.")
    parser.add_argument("--dsn", default=settings.postgres_dsn)
    parser.add_argument("--retention-days", type=int, default=settings.processing_log_retention_days)
    args = parser.parse_args()

    configure_logging()
    removed = ProcessingLog(make_session_factory(args.dsn)).prune(args.retention_days)
    print(f"removed={removed} retention_days={args.retention_days}")


if __name__ == "__main__":
    main()
