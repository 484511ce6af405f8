from __future__ import annotations

import logging
import queue
import sys
import threading
from typing import TYPE_CHECKING, TextIO

import pandas as pd

from .pipeline import TaskResult, format_duration

if TYPE_CHECKING:
    from .scheduler import RunStats

LOGGER = logging.getLogger("spam_getblock.harness.collector")

SUMMARY_PERCENTILES = (0.5, 0.95)


class ResultCollector:
    """Drains task results, prints per-task diagnostics and counts failures."""

    def __init__(
        self,
        out: TextIO | None = None,
        show_timings: bool = True,
        show_messages: bool = True,
    ) -> None:
        self._out = out
        self._show_timings = show_timings
        self._show_messages = show_messages
        self._lock = threading.Lock()
        self._results: list[TaskResult] = []

    @property
    def results(self) -> list[TaskResult]:
        with self._lock:
            return list(self._results)

    def drain(self, results: queue.Queue[TaskResult], expected: int) -> int:
        errors = 0
        for _ in range(expected):
            result = results.get()
            self._report(result)
            if result.error is not None:
                errors += 1
            with self._lock:
                self._results.append(result)
        LOGGER.info("Collected %d result(s), %d error(s)", expected, errors)
        return errors

    def build_dataframe(self) -> pd.DataFrame:
        """One row per task: id, status, error text and one column per stage (seconds)."""
        rows = []
        stage_names: list[str] = []
        for result in self.results:
            for name in result.timings:
                if name not in stage_names:
                    stage_names.append(name)
            row = {
                "id": result.id,
                "ok": result.ok,
                "failed_stage": result.error.stage if result.error is not None else None,
                "error": str(result.error) if result.error is not None else None,
            }
            row.update(result.timings)
            rows.append(row)

        columns = ["id", "ok", "failed_stage", "error", *stage_names]
        if not rows:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame(rows, columns=columns)

    def stage_summary(self) -> pd.DataFrame:
        """Latency statistics per stage over the successful tasks."""
        df = self.build_dataframe()
        stage_columns = [c for c in df.columns if c not in ("id", "ok", "failed_stage", "error")]
        succeeded = df[df["ok"].astype(bool)]
        if succeeded.empty or not stage_columns:
            return pd.DataFrame(columns=["count", "mean", "p50", "p95", "max"])

        timings = succeeded[stage_columns].astype(float)
        summary = pd.DataFrame(
            {
                "count": timings.count(),
                "mean": timings.mean(),
                "p50": timings.quantile(SUMMARY_PERCENTILES[0]),
                "p95": timings.quantile(SUMMARY_PERCENTILES[1]),
                "max": timings.max(),
            }
        )
        summary.index.name = "stage"
        return summary

    def _report(self, result: TaskResult) -> None:
        if self._show_timings:
            self._print(result.describe_timings())
        if result.error is not None:
            self._print(f"task {result.id}: {result.error}")
        elif self._show_messages:
            self._print(result.message)

    def _print(self, line: str) -> None:
        print(line, file=self._out or sys.stdout)


def format_stage_summary(summary: pd.DataFrame) -> str:
    if summary.empty:
        return "No successful tasks; no stage latencies to summarise."
    formatted = summary.copy()
    for column in ("mean", "p50", "p95", "max"):
        formatted[column] = formatted[column].map(format_duration)
    formatted["count"] = formatted["count"].astype(int)
    return formatted.to_string()


def format_run_summary(stats: RunStats) -> str:
    return "\n".join(
        [
            f"Total time: {format_duration(stats.elapsed_s)}",
            f"Errors: {stats.errors} / {stats.concurrency}",
            f"Rate: {stats.rate_per_second:.2f} /s",
        ]
    )


__all__ = [
    "ResultCollector",
    "format_run_summary",
    "format_stage_summary",
]
