"""
Run the retry and cleanup scheduler until SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading

from crawler.logging_utils import configure_logging
from crawler.scheduler.jobs import build_scheduler

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run periodic failed-job retries and cleanup.")
    parser.add_argument(
        "--source",
        action="append",
        dest="sources",
        default=None,
        help="Limit retry jobs to this source (repeatable). Defaults to every configured source.",
    )
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()

    configure_logging(args.log_level)
    stop = threading.Event()

    def _stop(signum, _frame) -> None:
        logger.info("Scheduler: signal %s received, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    scheduler = build_scheduler(args.sources)
    scheduler.start()
    logger.info("Scheduler: started jobs=%s", [job.id for job in scheduler.get_jobs()])
    try:
        stop.wait()
    finally:
        scheduler.shutdown(wait=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
