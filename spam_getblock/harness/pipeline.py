from __future__ import annotations

import contextlib
import logging
import time
import types
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Mapping, Protocol, Sequence

from .context import Context, ContextCancelled, DeadlineExceeded
from .errors import (
    DecodeError,
    DialError,
    StageCancelledError,
    StageError,
    StageTimeoutError,
    TaskError,
)

LOGGER = logging.getLogger("spam_getblock.harness.pipeline")

CONNECT_STAGE = "connect"
DECODE_STAGE = "decode"


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one pipeline execution; ``message`` is empty on failure."""

    id: Any
    error: TaskError | None = None
    message: str = ""
    timings: Mapping[str, float] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    def describe_timings(self) -> str:
        return ", ".join(f"{name}: {format_duration(seconds)}" for name, seconds in self.timings.items())


class Pipeline(Protocol):
    def run(self, ctx: Context, parameter: Any) -> TaskResult: ...


@dataclass(frozen=True)
class Stage:
    """Named remote call; ``call(ctx, session, parameter)`` returns its raw output."""

    name: str
    call: Callable[[Context, Any, Any], Any]


class StagedPipeline:
    """Connect, run each stage in order, then decode; stop at the first failure.

    Each stage is timed on its own. The session opened by ``connect`` is
    released on every exit path.
    """

    def __init__(
        self,
        connect: Callable[[Context], ContextManager[Any]],
        stages: Sequence[Stage],
        decode: Callable[..., str],
    ) -> None:
        names = [stage.name for stage in stages]
        if len(set(names)) != len(names) or {CONNECT_STAGE, DECODE_STAGE} & set(names):
            raise ValueError(f"stage names must be unique and not reserved: {names}")
        self._connect = connect
        self._stages = tuple(stages)
        self._decode = decode

    @property
    def stage_names(self) -> tuple[str, ...]:
        return (CONNECT_STAGE, *(stage.name for stage in self._stages), DECODE_STAGE)

    def run(self, ctx: Context, parameter: Any) -> TaskResult:
        timings = dict.fromkeys(self.stage_names, 0.0)
        try:
            with contextlib.ExitStack() as stack:
                session = self._timed(
                    ctx, timings, CONNECT_STAGE, lambda: stack.enter_context(self._connect(ctx))
                )
                outputs = []
                for stage in self._stages:
                    outputs.append(
                        self._timed(ctx, timings, stage.name, lambda: stage.call(ctx, session, parameter))
                    )
                message = self._timed(ctx, timings, DECODE_STAGE, lambda: self._decode(*outputs))
        except TaskError as exc:
            LOGGER.debug("task %s failed at %s after %.6fs: %s", parameter, exc.stage, exc.elapsed, exc)
            return TaskResult(id=parameter, error=exc, timings=types.MappingProxyType(timings))

        return TaskResult(
            id=parameter,
            message=str(message),
            timings=types.MappingProxyType(timings),
        )

    def _timed(self, ctx: Context, timings: dict[str, float], stage: str, func: Callable[[], Any]) -> Any:
        if ctx.done():
            raise _classify(ctx, stage, ctx.error(), 0.0)

        start = time.perf_counter()
        try:
            value = func()
        except TaskError as exc:
            exc.elapsed = time.perf_counter() - start
            raise
        except Exception as exc:  # noqa: BLE001
            raise _classify(ctx, stage, exc, time.perf_counter() - start) from exc
        timings[stage] = time.perf_counter() - start
        return value


def _classify(ctx: Context, stage: str, exc: BaseException | None, elapsed: float) -> TaskError:
    if isinstance(exc, DeadlineExceeded) or ctx.deadline_exceeded():
        return StageTimeoutError(stage, exc, elapsed)
    if isinstance(exc, ContextCancelled) or ctx.done():
        return StageCancelledError(stage, exc, elapsed)
    if stage == CONNECT_STAGE:
        return DialError(stage, exc, elapsed)
    if stage == DECODE_STAGE:
        error = DecodeError(cause=exc)
        error.elapsed = elapsed
        return error
    return StageError(stage, exc, elapsed)


def format_duration(seconds: float) -> str:
    """Render like ``0s``, ``850µs``, ``12.3ms`` or ``1.52s``."""
    if seconds <= 0:
        return "0s"
    if seconds < 1e-3:
        return f"{seconds * 1e6:.0f}µs"
    if seconds < 1:
        return f"{seconds * 1e3:.1f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, rest = divmod(seconds, 60)
    return f"{int(minutes)}m{rest:.1f}s"


__all__ = [
    "CONNECT_STAGE",
    "DECODE_STAGE",
    "Pipeline",
    "Stage",
    "StagedPipeline",
    "TaskResult",
    "format_duration",
]
