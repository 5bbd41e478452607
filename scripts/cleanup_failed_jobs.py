"""
Purge dead-letter and stale failed jobs from CLI.
"""

from __future__ import annotations

import argparse
import json
from datetime import timedelta

from crawler.config.loader import get_crawl_settings
from crawler.logging_utils import configure_logging
from crawler.retry.manager import RetryManager


def main() -> int:
    parser = argparse.ArgumentParser(description="Delete exhausted and old failed crawl jobs.")
    parser.add_argument(
        "--older-than-days",
        type=int,
        default=None,
        help="Retention horizon (defaults to CRAWL_FAILED_JOB_RETENTION_DAYS).",
    )
    args = parser.parse_args()

    configure_logging()
    days = args.older_than_days or get_crawl_settings().cleanup_after_days
    try:
        removed = RetryManager().cleanup_old_jobs(timedelta(days=days))
    except Exception as exc:  # noqa: BLE001
        print(json.dumps({"status": "failed", "error": str(exc)}, indent=2))
        return 1

    print(json.dumps({"status": "completed", "older_than_days": days, "removed": removed}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
