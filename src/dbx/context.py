"""Cooperative cancellation contexts.

A ``CancelContext`` is a signal that long-running work polls; nothing is
ever interrupted.  The row iterator checks it before every fetch, which
is also right after the consumer has handled the previous record.

Manifesto:
    Streaming a large query must be stoppable without making the blocking
    fetch call itself cancellation-aware.  Polling a shared signal at fixed
    points bounds the latency to roughly one fetch.

    - Explicit cancel: ``ctx, cancel = with_cancel(background())``
    - Deadline: ``ctx, cancel = with_timeout(parent, 0.5)``
    - Children inherit their parent's cancellation and the earlier deadline
    - The reason that happened first wins and never changes afterwards

Architecture:
    ::

        background()  ──►  with_cancel()  ──►  with_timeout()
            │                  │                    │
            └── never done     └── Event set        └── monotonic deadline
                                                        or Event set

        ctx.err() -> None | CancelledError | DeadlineExceededError

Examples:
    >>> ctx, cancel = with_cancel(background())
    >>> ctx.err() is None
    True
    >>> cancel()
    >>> ctx.err()
    CancelledError('context canceled', kind=cancelled)

    >>> ctx, cancel = with_timeout(background(), 0.0)
    >>> ctx.err()
    DeadlineExceededError('context deadline exceeded', kind=deadline_exceeded)

Guardrails:
    - Always call the returned ``cancel`` when done with a derived context
    - ``remaining()`` is ``None`` for contexts without a deadline

Tags:
    cancellation, deadline, context, cooperative, dbx

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from dbx.errors import CancelledError, DbxError, DeadlineExceededError

CancelFunc = Callable[[], None]


@dataclass
class CancelContext:
    """Cancellation signal with an optional deadline.

    Attributes:
        parent: Context this one derives from (``None`` for the root)
        deadline: Absolute deadline on the monotonic clock, if any
        start_time: When the context was created
    """

    parent: CancelContext | None = None
    deadline: float | None = None
    start_time: float = field(default_factory=time.monotonic)
    _event: threading.Event = field(default_factory=threading.Event, repr=False)
    _cancelled_at: float | None = field(default=None, repr=False)
    _settled_reason: tuple[DbxError, float] | None = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def remaining(self) -> float | None:
        """Seconds until the effective deadline, negative once expired."""
        deadline = self.effective_deadline()
        if deadline is None:
            return None
        return deadline - time.monotonic()

    def effective_deadline(self) -> float | None:
        """The earliest deadline on this context or any ancestor."""
        deadlines = []
        ctx: CancelContext | None = self
        while ctx is not None:
            if ctx.deadline is not None:
                deadlines.append(ctx.deadline)
            ctx = ctx.parent
        return min(deadlines) if deadlines else None

    @property
    def elapsed(self) -> float:
        """Elapsed time since creation in seconds."""
        return time.monotonic() - self.start_time

    def done(self) -> bool:
        """True once cancelled or past the deadline."""
        return self.err() is not None

    def err(self) -> DbxError | None:
        """Why the context is done, or ``None`` while it is live.

        Returns ``DeadlineExceededError`` when a deadline passed first and
        ``CancelledError`` when a cancel function was called first, however
        late ``err()`` itself is called.
        """
        settled = self._settled()
        return settled[0] if settled is not None else None

    def cancel(self) -> None:
        """Mark the context cancelled; idempotent and thread-safe."""
        with self._lock:
            if self._cancelled_at is None:
                self._cancelled_at = time.monotonic()
        self._event.set()
        self.err()

    def _settled(self) -> tuple[DbxError, float] | None:
        """The settled reason and when it happened, settling it if due."""
        if self._settled_reason is not None:
            return self._settled_reason

        candidates: list[tuple[DbxError, float]] = []
        if self.parent is not None:
            inherited = self.parent._settled()
            if inherited is not None:
                candidates.append(inherited)
        if self._event.is_set() and self._cancelled_at is not None:
            candidates.append((CancelledError(), self._cancelled_at))
        if self.deadline is not None and time.monotonic() >= self.deadline:
            candidates.append((DeadlineExceededError(), self.deadline))
        if not candidates:
            return None

        # Ties go to the parent, then to the explicit cancel.
        reason, at = min(candidates, key=lambda candidate: candidate[1])
        return self._settle(reason, at)

    def _settle(self, reason: DbxError, at: float) -> tuple[DbxError, float]:
        with self._lock:
            if self._settled_reason is None:
                self._settled_reason = (reason, at)
            return self._settled_reason


def background() -> CancelContext:
    """A root context that is never done."""
    return CancelContext()


def with_cancel(parent: CancelContext) -> tuple[CancelContext, CancelFunc]:
    """Derive a context that is done when ``cancel()`` is called."""
    ctx = CancelContext(parent=parent)
    return ctx, ctx.cancel


def with_deadline(parent: CancelContext, deadline: float) -> tuple[CancelContext, CancelFunc]:
    """Derive a context that expires at ``deadline`` (``time.monotonic()`` clock)."""
    ctx = CancelContext(parent=parent, deadline=deadline)
    return ctx, ctx.cancel


def with_timeout(parent: CancelContext, seconds: float) -> tuple[CancelContext, CancelFunc]:
    """Derive a context that expires ``seconds`` from now.

    Raises:
        ValueError: If seconds is negative
    """
    if seconds < 0:
        raise ValueError(f"Timeout must be non-negative, got {seconds}")
    return with_deadline(parent, time.monotonic() + seconds)


__all__ = [
    "CancelContext",
    "CancelFunc",
    "background",
    "with_cancel",
    "with_deadline",
    "with_timeout",
]
