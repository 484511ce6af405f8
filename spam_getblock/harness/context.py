from __future__ import annotations

import threading
import time
from typing import Callable


class ContextCancelled(Exception):
    """Raised when work is abandoned because its context was cancelled."""


class DeadlineExceeded(ContextCancelled):
    """Raised when work is abandoned because its context deadline passed."""


class Context:
    """Cancellation scope shared between a launcher and the tasks it starts.

    A context optionally carries a deadline (monotonic clock). Children derived
    with :meth:`with_timeout` never outlive their parent: cancelling the parent
    cancels every child, and a child's deadline is capped by the parent's.
    Contexts are context managers; leaving the ``with`` block releases the
    scope and detaches it from its parent.
    """

    def __init__(self, parent: Context | None = None, deadline: float | None = None) -> None:
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._parent = parent
        self._deadline = deadline
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._error: ContextCancelled | None = None
        self._children: set[Context] = set()
        self._callbacks: list[Callable[[], None]] = []
        if parent is not None:
            parent._attach(self)

    @classmethod
    def background(cls) -> Context:
        return cls()

    def with_timeout(self, timeout_s: float) -> Context:
        return Context(parent=self, deadline=time.monotonic() + timeout_s)

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, ``None`` when there is none."""
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def done(self) -> bool:
        if self._done.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._finish(DeadlineExceeded("context deadline exceeded"))
            return True
        return False

    def error(self) -> ContextCancelled | None:
        if not self.done():
            return None
        return self._error

    def deadline_exceeded(self) -> bool:
        return isinstance(self.error(), DeadlineExceeded)

    def cancel(self) -> None:
        self._finish(ContextCancelled("context cancelled"))

    def wait(self, timeout_s: float | None = None) -> bool:
        """Block up to ``timeout_s`` or until the context is done.

        Returns True when the context finished (cancelled or expired).
        """
        remaining = self.remaining()
        if remaining is not None:
            timeout_s = remaining if timeout_s is None else min(timeout_s, remaining)
        self._done.wait(timeout=timeout_s)
        return self.done()

    def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds``, raising the context error if it ends first."""
        if self.wait(seconds):
            raise self._error or ContextCancelled("context cancelled")

    def check(self) -> None:
        error = self.error()
        if error is not None:
            raise error

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` when the context is cancelled.

        Deadline expiry only triggers callbacks once it has been observed; code
        that blocks on I/O passes :meth:`remaining` as its own timeout.
        """
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def release(self) -> None:
        self.cancel()

    def __enter__(self) -> Context:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _attach(self, child: Context) -> None:
        with self._lock:
            if not self._done.is_set():
                self._children.add(child)
                return
        child._finish(self._error or ContextCancelled("context cancelled"))

    def _detach(self, child: Context) -> None:
        with self._lock:
            self._children.discard(child)

    def _finish(self, error: ContextCancelled) -> None:
        with self._lock:
            if self._done.is_set():
                return
            self._error = error
            self._done.set()
            children = list(self._children)
            callbacks = list(self._callbacks)
            self._children.clear()
            self._callbacks.clear()

        for child in children:
            child._finish(error)
        for callback in callbacks:
            callback()
        if self._parent is not None:
            self._parent._detach(self)


__all__ = ["Context", "ContextCancelled", "DeadlineExceeded"]
