"""
Process due failed jobs for one source from CLI.
"""

from __future__ import annotations

import argparse
import json

from crawler.config.loader import get_crawl_settings, get_source_settings
from crawler.identity import SOURCES
from crawler.logging_utils import configure_logging
from crawler.registry import OrchestratorRegistry, build_retry_manager
from crawler.retry.processor import RetryProcessor


def main() -> int:
    parser = argparse.ArgumentParser(description="Retry failed crawl jobs.")
    parser.add_argument("--source", required=True, choices=sorted(SOURCES))
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum jobs to pick up (defaults to CRAWL_RETRY_BATCH_LIMIT).",
    )
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()

    configure_logging(args.log_level)
    crawl_settings = get_crawl_settings()
    manager = build_retry_manager(get_source_settings(args.source))
    try:
        orchestrator = OrchestratorRegistry().create_orchestrator(args.source, retry_queue=manager)
    except ValueError as exc:
        print(json.dumps({"source": args.source, "status": "failed", "error": str(exc)}, indent=2))
        return 1
    processor = RetryProcessor(
        manager,
        orchestrator.retry_handlers(),
        workers=crawl_settings.retry_workers,
    )
    try:
        summary = processor.process(args.source, args.limit or crawl_settings.retry_batch_limit)
    except Exception as exc:  # noqa: BLE001
        print(json.dumps({"source": args.source, "status": "failed", "error": str(exc)}, indent=2))
        return 1
    finally:
        orchestrator.client.close()

    payload = summary.to_dict()
    payload["pending"] = manager.count_pending(args.source)
    payload["exhausted"] = manager.count_exhausted(args.source)
    print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
