"""
Bounded fan-out stage.

Every level of a source hierarchy (season, tournament, team, player) is
walked with the same primitive: a fixed set of items, a fixed number of
worker threads, one handler call per item. A failing item never aborts its
siblings.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from crawler.logging_utils import log_event
from crawler.workers.cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StageStats:
    """
    Outcome counters for one stage run.
    """

    name: str
    total: int
    succeeded: int
    failed: int
    skipped: int
    elapsed_seconds: float

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed


class CrawlCounters:
    """
    Lock-protected counter bag that nested stages fold their totals into.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()

    def add(self, **deltas: int) -> None:
        with self._lock:
            for key, value in deltas.items():
                self._counts[key] += value

    def merge(self, other: CrawlCounters) -> None:
        self.add(**other.snapshot())

    def get(self, key: str) -> int:
        with self._lock:
            return self._counts.get(key, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)


class BoundedStage(Generic[T]):
    """
    Drain a pre-filled queue of items with a fixed number of workers.
    """

    def __init__(
        self,
        *,
        name: str,
        workers: int,
        handle: Callable[[CancellationToken, T], bool],
    ) -> None:
        self._name = name
        self._workers = max(1, workers)
        self._handle = handle

    def run(self, items: Sequence[T], *, token: CancellationToken) -> StageStats:
        started = time.monotonic()
        total = len(items)
        if total == 0:
            return StageStats(self._name, 0, 0, 0, 0, 0.0)

        # Sized exactly to the item count and never refilled.
        work: queue.Queue[T] = queue.Queue(maxsize=total)
        for item in items:
            work.put_nowait(item)

        lock = threading.Lock()
        outcome = {"succeeded": 0, "failed": 0}

        def worker(worker_id: int) -> None:
            while True:
                if token.cancelled:
                    log_event(
                        logger,
                        logging.WARNING,
                        "stage_worker_cancelled",
                        stage=self._name,
                        worker_id=worker_id,
                    )
                    return
                try:
                    item = work.get_nowait()
                except queue.Empty:
                    return
                ok = self._invoke(token, item, worker_id)
                with lock:
                    outcome["succeeded" if ok else "failed"] += 1

        worker_count = min(self._workers, total)
        threads = [
            threading.Thread(
                target=worker,
                args=(index + 1,),
                name=f"{self._name}-worker-{index + 1}",
                daemon=True,
            )
            for index in range(worker_count)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        succeeded = outcome["succeeded"]
        failed = outcome["failed"]
        stats = StageStats(
            name=self._name,
            total=total,
            succeeded=succeeded,
            failed=failed,
            skipped=total - succeeded - failed,
            elapsed_seconds=time.monotonic() - started,
        )
        log_event(
            logger,
            logging.DEBUG,
            "stage_completed",
            stage=self._name,
            workers=worker_count,
            total=stats.total,
            succeeded=stats.succeeded,
            failed=stats.failed,
            skipped=stats.skipped,
            elapsed_seconds=round(stats.elapsed_seconds, 3),
        )
        return stats

    def _invoke(self, token: CancellationToken, item: T, worker_id: int) -> bool:
        try:
            return bool(self._handle(token, item))
        except Exception as exc:  # noqa: BLE001
            log_event(
                logger,
                logging.ERROR,
                "stage_item_failed",
                stage=self._name,
                worker_id=worker_id,
                item=repr(item)[:200],
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False


def run_bounded_stage(
    items: Sequence[T],
    handle: Callable[[CancellationToken, T], bool],
    *,
    workers: int,
    token: CancellationToken,
    name: str = "stage",
) -> StageStats:
    """
    Run one bounded stage over ``items`` and return its counters.
    """

    return BoundedStage(name=name, workers=workers, handle=handle).run(items, token=token)
