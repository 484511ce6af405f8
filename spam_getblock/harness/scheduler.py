from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from .collector import ResultCollector
from .config import RunConfig
from .context import Context
from .errors import TaskError
from .pipeline import Pipeline, TaskResult

LOGGER = logging.getLogger("spam_getblock.harness.scheduler")


@dataclass
class RunStats:
    concurrency: int
    errors: int
    started_at: float
    finished_at: float

    @property
    def elapsed_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def rate_per_second(self) -> float:
        if self.elapsed_s == 0:
            return 0.0
        return self.concurrency / self.elapsed_s


class TaskScheduler:
    """Start one thread per task, paced by the configured inter-launch delay."""

    def __init__(
        self,
        config: RunConfig,
        pipeline: Pipeline,
        parameters: Iterable[Any],
        root: Context | None = None,
    ) -> None:
        self._config = config
        self._pipeline = pipeline
        self._parameters: Iterator[Any] = iter(parameters)
        self._root = root or Context.background()

    def launch(self) -> queue.Queue[TaskResult]:
        """Launch every task, wait for all of them, and return the filled result queue."""
        concurrency = self._config.concurrency
        results: queue.Queue[TaskResult] = queue.Queue(maxsize=concurrency)
        threads: list[threading.Thread] = []

        LOGGER.info(
            "Launching %d task(s) against %s (delay=%.3fs, timeout=%.3fs)",
            concurrency,
            self._config.url,
            self._config.delay_s,
            self._config.timeout_s,
        )
        try:
            for index in range(concurrency):
                parameter = self._next_parameter(index)
                ctx = self._root.with_timeout(self._config.timeout_s)
                thread = threading.Thread(
                    target=self._run_task,
                    args=(ctx, parameter, results),
                    name=f"task-{index}",
                    daemon=True,
                )
                thread.start()
                threads.append(thread)
                if index + 1 < concurrency and self._config.delay_s > 0:
                    # Paces launches only; a cancelled root skips the remaining pauses.
                    self._root.wait(self._config.delay_s)
        finally:
            for thread in threads:
                thread.join()

        LOGGER.info("All %d task(s) finished", len(threads))
        return results

    def _next_parameter(self, index: int) -> Any:
        try:
            return next(self._parameters)
        except StopIteration:
            raise ValueError(
                f"parameter source exhausted after {index} of {self._config.concurrency} tasks"
            ) from None

    def _run_task(self, ctx: Context, parameter: Any, results: queue.Queue[TaskResult]) -> None:
        with ctx:
            try:
                result = self._pipeline.run(ctx, parameter)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("pipeline raised for task %s", parameter)
                result = TaskResult(id=parameter, error=TaskError("pipeline", exc))
        results.put_nowait(result)


def launch(
    config: RunConfig,
    pipeline: Pipeline,
    parameters: Iterable[Any],
    *,
    root: Context | None = None,
    collector: ResultCollector | None = None,
) -> int:
    """Run every task, report each result and return the number of failed tasks."""
    scheduler = TaskScheduler(config, pipeline, parameters, root=root)
    results = scheduler.launch()
    collector = collector or ResultCollector()
    return collector.drain(results, config.concurrency)


def run_load(
    config: RunConfig,
    pipeline: Pipeline,
    parameters: Iterable[Any],
    *,
    root: Context | None = None,
    collector: ResultCollector | None = None,
) -> RunStats:
    started_at = time.perf_counter()
    errors = launch(config, pipeline, parameters, root=root, collector=collector)
    finished_at = time.perf_counter()
    return RunStats(
        concurrency=config.concurrency,
        errors=errors,
        started_at=started_at,
        finished_at=finished_at,
    )


__all__ = ["RunStats", "TaskScheduler", "launch", "run_load"]
