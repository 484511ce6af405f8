from __future__ import annotations


class TaskError(Exception):
    """Base class for failures recorded on a task result."""

    def __init__(
        self,
        stage: str,
        cause: BaseException | None = None,
        elapsed: float = 0.0,
    ) -> None:
        self.stage = stage
        self.cause = cause
        self.elapsed = elapsed
        super().__init__(stage, cause)

    def __str__(self) -> str:
        if self.cause is None:
            return f"{self.stage}: {self.describe()}"
        return f"{self.stage}: {self.describe()}: {self.cause}"

    def describe(self) -> str:
        return "failed"


class DialError(TaskError):
    """Raised when the connection to the node could not be established."""

    def describe(self) -> str:
        return "dial failed"


class StageError(TaskError):
    """Raised when a named remote-call stage failed."""


class StageTimeoutError(StageError):
    """Raised when a stage did not finish before the task deadline."""

    def describe(self) -> str:
        return "deadline exceeded"


class StageCancelledError(StageError):
    """Raised when the run was cancelled while the stage was in flight."""

    def describe(self) -> str:
        return "cancelled"


class DecodeError(TaskError):
    """Raised when fetched data could not be turned into a summary."""

    def __init__(self, message: str = "", cause: BaseException | None = None, stage: str = "decode") -> None:
        self.message = message
        super().__init__(stage, cause)

    def describe(self) -> str:
        return self.message or "decode failed"


__all__ = [
    "TaskError",
    "DialError",
    "StageError",
    "StageTimeoutError",
    "StageCancelledError",
    "DecodeError",
]
