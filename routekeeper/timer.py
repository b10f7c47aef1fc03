"""Pause/resume-aware elapsed-time tracking."""

import asyncio
from typing import Optional, Callable

from .clock import Clock
from .geo import format_clock


class ElapsedTimer:
    """Stopwatch whose value is always derived from clock deltas.

    The 1 Hz tick only refreshes the display callback; it never feeds the
    elapsed value, so missed ticks (a suspended process) cause no drift.
    """

    def __init__(self, clock: Optional[Clock] = None, tick_interval: float = 1.0,
                 on_tick: Optional[Callable[[str], None]] = None, logger=None):
        self.clock = clock or Clock()
        self.tick_interval = tick_interval
        self.on_tick = on_tick
        self.logger = logger
        self.elapsed_time = 0.0  # ms
        self.is_running = False
        self._start_ref: Optional[float] = None  # monotonic ms
        self._tick_task: Optional[asyncio.Task] = None

    def start(self, resume_from: float = 0):
        """Start counting, continuing from `resume_from` ms"""
        if self.is_running:
            return
        self.elapsed_time = resume_from
        self._start_ref = self.clock.monotonic_ms() - resume_from
        self.is_running = True
        self._start_ticking()
        self._log("Timer started", {"resume_from_ms": resume_from})
        self._refresh()

    def pause(self):
        if not self.is_running:
            return
        self.elapsed_time = self.clock.monotonic_ms() - self._start_ref
        self.is_running = False
        self._stop_ticking()
        self._log("Timer paused", {"elapsed": format_clock(self.elapsed_time)})

    def resume(self):
        if self.is_running:
            return
        self.start(self.elapsed_time)

    def stop(self) -> float:
        """Stop counting and return the final elapsed value"""
        if self.is_running:
            self.elapsed_time = self.clock.monotonic_ms() - self._start_ref
            self.is_running = False
            self._stop_ticking()
            self._log("Timer stopped", {"elapsed": format_clock(self.elapsed_time)})
        return self.elapsed_time

    def set_elapsed_time(self, elapsed: float):
        """Force the stored value without starting (used when restoring)"""
        self.elapsed_time = elapsed
        self._refresh()

    def reset(self):
        self.stop()
        self.elapsed_time = 0.0
        self._start_ref = None
        self._refresh()

    def get_current_elapsed(self) -> float:
        if self.is_running:
            return self.clock.monotonic_ms() - self._start_ref
        return self.elapsed_time

    def _start_ticking(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop: elapsed time is still exact, only the display is static
            return
        self._tick_task = loop.create_task(self._tick_loop())

    def _stop_ticking(self):
        if self._tick_task:
            self._tick_task.cancel()
            self._tick_task = None

    async def _tick_loop(self):
        while self.is_running:
            await asyncio.sleep(self.tick_interval)
            self._refresh()

    def _refresh(self):
        if self.on_tick:
            self.on_tick(format_clock(self.get_current_elapsed()))

    def _log(self, message: str, data: dict):
        if self.logger:
            self.logger.log(message, data)
