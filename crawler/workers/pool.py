"""
Adaptive worker pool for workloads whose size is not known up front.

Workers pull tasks from a bounded queue and push ``Result`` objects onto a
result queue. A monitor thread grows the worker count while the task queue
stays above the configured utilization threshold.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from crawler.logging_utils import log_event
from crawler.workers.cancellation import CancellationToken

logger = logging.getLogger(__name__)

_STOP = object()
_MAX_SCALE_STEP = 2
_SUBMIT_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class PoolConfig:
    """
    Sizing and scaling parameters for one pool.
    """

    name: str
    worker_count: int = 4
    max_workers: int = 16
    buffer_size: int = 100
    task_timeout_seconds: float | None = None
    scale_threshold: float = 0.8
    scale_interval_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        if self.max_workers < self.worker_count:
            raise ValueError("max_workers must be >= worker_count")
        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        if not 0.0 < self.scale_threshold <= 1.0:
            raise ValueError("scale_threshold must be in (0, 1]")


@dataclass(frozen=True)
class Task:
    """
    One unit of pool work.

    ``priority`` (0-10) is carried but not used for ordering yet; the queue is
    FIFO.
    """

    task_id: str
    fn: Callable[[CancellationToken], Any]
    priority: int = 5
    payload: Any = None

    def __post_init__(self) -> None:
        if not 0 <= self.priority <= 10:
            raise ValueError("priority must be between 0 and 10")


@dataclass(frozen=True)
class Result:
    task_id: str
    data: Any = None
    error: BaseException | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class PoolMetrics:
    active_workers: int
    queued_tasks: int
    processed_tasks: int
    failed_tasks: int
    total_duration_ms: int
    last_utilization: float
    scale_events: int = 0
    dropped_submissions: int = 0


@dataclass
class _MetricsState:
    processed: int = 0
    failed: int = 0
    total_duration_ms: int = 0
    last_utilization: float = 0.0
    scale_events: int = 0
    dropped: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)


class AdaptiveWorkerPool:
    """
    Elastic task executor: grows under sustained queue pressure, up to a cap.
    """

    def __init__(self, config: PoolConfig, *, token: CancellationToken | None = None) -> None:
        self._config = config
        self._token = token.child() if token is not None else CancellationToken()
        self._tasks: queue.Queue[Any] = queue.Queue(maxsize=config.buffer_size)
        self._results: queue.Queue[Any] = queue.Queue()
        self._workers: list[threading.Thread] = []
        self._workers_lock = threading.Lock()
        self._closed = threading.Event()
        self._started = False
        self._monitor: threading.Thread | None = None
        self._metrics = _MetricsState()

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def worker_count(self) -> int:
        with self._workers_lock:
            return len(self._workers)

    def start(self) -> None:
        with self._workers_lock:
            if self._started:
                return
            self._started = True
            self._start_workers_locked(self._config.worker_count)
        if self._config.scale_interval_seconds > 0:
            self._monitor = threading.Thread(
                target=self._adaptive_scaling,
                name=f"{self._config.name}-scaler",
                daemon=True,
            )
            self._monitor.start()

    def submit(self, task: Task) -> bool:
        """
        Enqueue ``task``; blocks while the buffer is full.

        Returns False (and drops the task) once the pool is closed or its
        token is cancelled.
        """

        while True:
            # Checked and enqueued under the lock close() holds while queueing
            # its stop markers, so an accepted task always lands ahead of them.
            with self._workers_lock:
                if self._closed.is_set() or self._token.cancelled:
                    with self._metrics.lock:
                        self._metrics.dropped += 1
                    return False
                try:
                    self._tasks.put_nowait(task)
                    return True
                except queue.Full:
                    pass
            self._closed.wait(_SUBMIT_POLL_SECONDS)

    def results(self) -> Iterator[Result]:
        """
        Yield results until the pool is closed and drained.
        """

        while True:
            item = self._results.get()
            if item is _STOP:
                # Leave the marker for any other consumer.
                self._results.put(_STOP)
                return
            yield item

    def close(self) -> None:
        """
        Stop intake, let workers drain queued tasks, then close results.
        """

        if self._closed.is_set():
            return
        with self._workers_lock:
            self._closed.set()
            workers = list(self._workers)
            # One marker per worker, queued behind every pending task.
            for _ in workers:
                self._tasks.put(_STOP)
        for worker in workers:
            worker.join()
        if self._monitor is not None:
            self._monitor.join()
        self._results.put(_STOP)
        self._token.cancel()
        log_event(
            logger,
            logging.INFO,
            "worker_pool_closed",
            pool=self._config.name,
            workers=len(workers),
            processed=self._metrics.processed,
            failed=self._metrics.failed,
        )

    def metrics(self) -> PoolMetrics:
        with self._metrics.lock:
            return PoolMetrics(
                active_workers=self.worker_count,
                queued_tasks=self._tasks.qsize(),
                processed_tasks=self._metrics.processed,
                failed_tasks=self._metrics.failed,
                total_duration_ms=self._metrics.total_duration_ms,
                last_utilization=self._metrics.last_utilization,
                scale_events=self._metrics.scale_events,
                dropped_submissions=self._metrics.dropped,
            )

    def utilization(self) -> float:
        return self._tasks.qsize() / self._config.buffer_size

    def scale_once(self) -> int:
        """
        Run one scaling decision; return how many workers were added.
        """

        utilization = self.utilization()
        with self._metrics.lock:
            self._metrics.last_utilization = utilization
        if utilization <= self._config.scale_threshold:
            return 0

        with self._workers_lock:
            if self._closed.is_set():
                return 0
            current = len(self._workers)
            to_add = min(_MAX_SCALE_STEP, self._config.max_workers - current)
            if to_add <= 0:
                return 0
            self._start_workers_locked(to_add)

        with self._metrics.lock:
            self._metrics.scale_events += 1
        log_event(
            logger,
            logging.INFO,
            "worker_pool_scaled_up",
            pool=self._config.name,
            added=to_add,
            workers=current + to_add,
            utilization=round(utilization, 3),
        )
        return to_add

    # TODO: scale down once a drain protocol exists (signal an idle worker to
    # exit only between tasks and remove it from _workers under the lock).
    def _adaptive_scaling(self) -> None:
        interval = self._config.scale_interval_seconds
        while True:
            if self._closed.wait(interval) or self._token.cancelled:
                return
            self.scale_once()

    def _start_workers_locked(self, count: int) -> None:
        for _ in range(count):
            worker_id = len(self._workers) + 1
            thread = threading.Thread(
                target=self._run_worker,
                args=(worker_id,),
                name=f"{self._config.name}-worker-{worker_id}",
                daemon=True,
            )
            self._workers.append(thread)
            thread.start()

    def _run_worker(self, worker_id: int) -> None:
        while True:
            task = self._tasks.get()
            if task is _STOP:
                return
            self._results.put(self._execute(task, worker_id))

    def _execute(self, task: Task, worker_id: int) -> Result:
        task_token = self._token.child(timeout_seconds=self._config.task_timeout_seconds)
        started = time.monotonic()
        data: Any = None
        error: BaseException | None = None
        try:
            data = task.fn(task_token)
            if task_token.deadline_exceeded:
                error = TimeoutError(
                    f"task {task.task_id} exceeded {self._config.task_timeout_seconds}s"
                )
        except Exception as exc:  # noqa: BLE001
            error = exc
        duration_ms = int((time.monotonic() - started) * 1000)

        with self._metrics.lock:
            self._metrics.processed += 1
            self._metrics.total_duration_ms += duration_ms
            if error is not None:
                self._metrics.failed += 1
        if error is not None:
            log_event(
                logger,
                logging.WARNING,
                "worker_pool_task_failed",
                pool=self._config.name,
                worker_id=worker_id,
                task_id=task.task_id,
                duration_ms=duration_ms,
                error=str(error),
            )
        return Result(task_id=task.task_id, data=data, error=error, duration_ms=duration_ms)
