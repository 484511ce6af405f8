from __future__ import annotations

import contextlib
import os
import threading

os.environ.setdefault("MPLBACKEND", "Agg")

import pytest

from spam_getblock.harness.pipeline import Stage, StagedPipeline


class FakeSession:
    def __init__(self) -> None:
        self.closed = False


class SessionTracker:
    """Hands out fake sessions and remembers whether each was released."""

    def __init__(self, fail_with: Exception | None = None, latency: float = 0.001) -> None:
        self.fail_with = fail_with
        self.latency = latency
        self.sessions: list[FakeSession] = []
        self._lock = threading.Lock()

    @contextlib.contextmanager
    def connect(self, ctx):
        ctx.sleep(self.latency)
        if self.fail_with is not None:
            raise self.fail_with
        session = FakeSession()
        with self._lock:
            self.sessions.append(session)
        try:
            yield session
        finally:
            session.closed = True

    @property
    def all_closed(self) -> bool:
        return all(session.closed for session in self.sessions)


def returning(value, latency: float = 0.001):
    def call(ctx, session, parameter):
        ctx.sleep(latency)
        return value

    return call


def failing(message: str, latency: float = 0.001):
    def call(ctx, session, parameter):
        ctx.sleep(latency)
        raise RuntimeError(message)

    return call


def join_outputs(*outputs) -> str:
    return "outputs: " + ", ".join(str(output) for output in outputs)


def make_pipeline(tracker: SessionTracker, stages: dict | None = None, decode=join_outputs) -> StagedPipeline:
    stages = stages or {
        "fetch-primary": returning("block"),
        "fetch-secondary": returning(["tx"]),
        "fetch-tertiary": returning(["event"]),
    }
    return StagedPipeline(
        connect=tracker.connect,
        stages=[Stage(name, call) for name, call in stages.items()],
        decode=decode,
    )


@pytest.fixture
def tracker() -> SessionTracker:
    return SessionTracker()
