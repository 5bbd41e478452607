"""
Run one full source crawl from CLI.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal

from crawler.identity import SOURCES
from crawler.logging_utils import configure_logging
from crawler.orchestrators.fhspb import FhspbOrchestrator
from crawler.registry import OrchestratorRegistry
from crawler.workers.cancellation import CancellationToken

logger = logging.getLogger(__name__)


def _install_signal_handlers(token: CancellationToken) -> None:
    def _cancel(signum, _frame) -> None:
        logger.warning("Shutdown signal %s received; finishing in-flight work", signum)
        token.cancel()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)


def main() -> int:
    parser = argparse.ArgumentParser(description="Crawl one hockey statistics source.")
    parser.add_argument("--source", required=True, choices=sorted(SOURCES))
    parser.add_argument(
        "--statistics",
        choices=("skip", "with", "only"),
        default="skip",
        help="fhspb only: also (or only) walk the paginated statistics grids.",
    )
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()
    if args.statistics != "skip" and args.source != "fhspb":
        parser.error("--statistics is only supported for --source fhspb")

    configure_logging(args.log_level)
    token = CancellationToken()
    _install_signal_handlers(token)

    try:
        orchestrator = OrchestratorRegistry().create_orchestrator(args.source)
    except ValueError as exc:
        print(json.dumps({"source": args.source, "status": "failed", "error": str(exc)}, indent=2))
        return 1

    summaries = []
    try:
        if args.statistics != "only":
            summaries.append(orchestrator.run(token))
        if args.statistics != "skip" and isinstance(orchestrator, FhspbOrchestrator):
            summaries.append(orchestrator.run_statistics(token))
    except Exception as exc:  # noqa: BLE001
        print(json.dumps({"source": args.source, "status": "failed", "error": str(exc)}, indent=2))
        return 1
    finally:
        orchestrator.client.close()

    print(json.dumps([summary.to_dict() for summary in summaries], indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
