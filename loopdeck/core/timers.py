"""
General-purpose deferred callbacks for Loopdeck.

Timers here only *wake* the scheduler. Every decision about when audio
starts or stops is taken against the audio context clock, so a late or early
timer never shifts the timeline.
"""
from __future__ import annotations
import heapq
import itertools
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger("Loopdeck")


class TimerHandle:
    """Cancellable reference to a pending deferred callback."""
    __slots__ = ('_callback', '_when', '_seq', '_cancelled', '_done', 'label')

    def __init__(self, callback: Callable[[], None], when: float, seq: int, label: str = "") -> None:
        self._callback = callback
        self._when = when
        self._seq = seq
        self._cancelled = False
        self._done = False
        self.label = label

    @property
    def when(self) -> float:
        """Timer-clock time at which the callback is due."""
        return self._when

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> bool:
        """True until the callback fires or the handle is cancelled."""
        return not (self._cancelled or self._done)

    def cancel(self) -> None:
        """Prevent the callback from firing. Safe to call repeatedly."""
        self._cancelled = True

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "done" if self._done else f"due={self._when:.4f}"
        return f"<TimerHandle {self.label or self._callback!r} {state}>"


class TimerQueue:
    """
    Single-threaded deferred callback queue.

    The host drives it by calling `run_due()` periodically (a Qt timer in
    the desktop app, the test itself in unit tests). Nothing here sleeps.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """
        Args:
            clock: Monotonic time source in seconds
        """
        self._clock = clock
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._clock()

    def call_later(self, delay: float, callback: Callable[[], None], label: str = "") -> TimerHandle:
        """Schedule `callback` to run `delay` seconds from now."""
        return self.call_at(self._clock() + max(0.0, delay), callback, label)

    def call_at(self, when: float, callback: Callable[[], None], label: str = "") -> TimerHandle:
        """Schedule `callback` at an absolute timer-clock time."""
        seq = next(self._counter)
        handle = TimerHandle(callback, when, seq, label)
        heapq.heappush(self._heap, (when, seq, handle))
        return handle

    def reschedule(self, handle: TimerHandle, delay: float) -> TimerHandle:
        """
        Push an existing handle back by `delay` seconds from now.

        The handle object stays the same, so whoever holds it can still
        cancel the re-armed wake-up.
        """
        if handle.cancelled:
            return handle
        seq = next(self._counter)
        handle._done = False
        handle._when = self._clock() + max(0.0, delay)
        handle._seq = seq
        heapq.heappush(self._heap, (handle._when, seq, handle))
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> bool:
        """Cancel a handle; returns True if it was still pending."""
        if handle is None or not handle.pending:
            return False
        handle.cancel()
        return True

    def run_due(self) -> int:
        """
        Fire every callback whose due time has passed.

        Timers scheduled while this runs wait for the next call, even with
        zero delay.

        Returns:
            Number of callbacks fired
        """
        now = self._clock()
        due = []
        while self._heap and self._heap[0][0] <= now:
            due.append(heapq.heappop(self._heap))
        fired = 0
        for _, seq, handle in due:
            # Stale entry left behind by reschedule()
            if handle.cancelled or seq != handle._seq:
                continue
            handle._done = True
            fired += 1
            try:
                handle._callback()
            except Exception as e:
                logger.error("Timer callback %s failed: %s", handle.label or handle._callback, e, exc_info=True)
        return fired

    def next_deadline(self) -> Optional[float]:
        """Earliest pending due time, or None when idle."""
        self._discard_stale()
        return self._heap[0][0] if self._heap else None

    def clear(self) -> None:
        """Cancel everything."""
        for _, _, handle in self._heap:
            handle.cancel()
        self._heap.clear()

    def _discard_stale(self) -> None:
        while self._heap:
            _, seq, handle = self._heap[0]
            if handle.cancelled or seq != handle._seq:
                heapq.heappop(self._heap)
                continue
            break

    def __len__(self) -> int:
        return sum(1 for _, seq, h in self._heap if not h.cancelled and seq == h._seq)
