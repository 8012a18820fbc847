"""Frame schedulers: the per-frame clock that drives playback."""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable

logger = logging.getLogger(__name__)

FrameCallback = Callable[[float], None]
TimerCallback = Callable[[], None]


class FrameScheduler(ABC):
    """
    Abstract host clock.

    Frame callbacks registered with :meth:`request_tick` run once, on the next
    display frame, and receive the frame timestamp in seconds. A callback that
    wants another frame asks for it again. Everything runs on one thread.
    """

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds."""

    @abstractmethod
    def request_tick(self, callback: FrameCallback) -> int:
        """Run ``callback`` on the next frame; returns a handle for :meth:`cancel`."""

    @abstractmethod
    def call_later(self, delay: float, callback: TimerCallback) -> int:
        """Run ``callback`` once after ``delay`` seconds; returns a handle."""

    @abstractmethod
    def cancel(self, handle: int | None) -> None:
        """Cancel a pending frame or timer. Unknown or ``None`` handles are ignored."""


class _QueueScheduler(FrameScheduler):
    """Shared bookkeeping for pending frames and timers."""

    def __init__(self) -> None:
        self._handles = itertools.count(1)
        self._frames: dict[int, FrameCallback] = {}
        self._timers: list[tuple[float, int, TimerCallback]] = []
        self._cancelled: set[int] = set()

    def request_tick(self, callback: FrameCallback) -> int:
        handle = next(self._handles)
        self._frames[handle] = callback
        return handle

    def call_later(self, delay: float, callback: TimerCallback) -> int:
        handle = next(self._handles)
        heapq.heappush(self._timers, (self.now() + max(0.0, delay), handle, callback))
        return handle

    def cancel(self, handle: int | None) -> None:
        if handle is None:
            return
        if self._frames.pop(handle, None) is None:
            self._cancelled.add(handle)

    @property
    def idle(self) -> bool:
        """True when no frame and no live timer is pending."""
        return not self._frames and all(h in self._cancelled for _, h, _ in self._timers)

    def _run_frame(self, timestamp: float) -> None:
        frames, self._frames = self._frames, {}
        for callback in frames.values():
            callback(timestamp)

    def _run_due_timers(self, timestamp: float) -> None:
        while self._timers and self._timers[0][0] <= timestamp:
            _, handle, callback = heapq.heappop(self._timers)
            if handle in self._cancelled:
                self._cancelled.discard(handle)
                continue
            callback()


class ManualScheduler(_QueueScheduler):
    """
    Deterministic scheduler for tests and offline runs.

    Time only moves when :meth:`advance` or :meth:`step` is called; each frame
    runs the pending frame callbacks first and then any timers that came due.
    """

    def __init__(self, frame_interval: float = 1 / 60, start: float = 0.0) -> None:
        super().__init__()
        self.frame_interval = frame_interval
        self._now = start

    def now(self) -> float:
        return self._now

    def step(self) -> None:
        """Advance one frame interval and run that frame."""
        self._now += self.frame_interval
        self._run_frame(self._now)
        self._run_due_timers(self._now)

    def advance(self, seconds: float) -> None:
        """Run as many whole frames as fit in ``seconds``."""
        for _ in range(int(round(seconds / self.frame_interval))):
            self.step()


class FrameLoopScheduler(_QueueScheduler):
    """
    Real-time frame loop at a fixed frame rate.

    :meth:`run` blocks the calling thread, sleeping between frames, until
    nothing is pending any more (playback finished, paused or reset).
    """

    def __init__(self, fps: int = 60, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__()
        self.frame_interval = 1.0 / max(1, fps)
        self.clock = clock

    def now(self) -> float:
        return self.clock()

    def run(self, max_seconds: float | None = None) -> None:
        """Run frames until idle, or until ``max_seconds`` have elapsed."""
        started = self.now()
        next_frame = started
        while not self.idle:
            if max_seconds is not None and self.now() - started >= max_seconds:
                logger.info("Frame loop stopped after %.1f s", max_seconds)
                break
            delay = next_frame - self.now()
            if delay > 0:
                time.sleep(delay)
            timestamp = self.now()
            self._run_frame(timestamp)
            self._run_due_timers(timestamp)
            next_frame += self.frame_interval
