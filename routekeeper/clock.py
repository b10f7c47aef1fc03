"""Time sources."""

import time


class Clock:
    """Wall and monotonic time in milliseconds.

    Wall time stamps entries, snapshots and session start times. Every
    elapsed-time delta uses the monotonic source so that a device clock
    change mid-session cannot corrupt durations.
    """

    def now_ms(self) -> float:
        return time.time() * 1000

    def monotonic_ms(self) -> float:
        return time.monotonic() * 1000
