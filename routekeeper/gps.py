"""GPS access, recording/playback and the positioning subscription."""

import asyncio
import json
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Callable

from .config import CONFIG
from .errors import PositionError
from .models import PositionSample


def optional_float(value) -> Optional[float]:
    """Numeric reading or None when the field is missing or not a number"""
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class PositionOptions:
    high_accuracy: bool = True
    max_cached_age_ms: float = 0
    timeout_ms: float = 30000

    @classmethod
    def from_config(cls, d: dict) -> "PositionOptions":
        return cls(**d)


class GPS:
    """GPS access via Termux API"""

    def __init__(self):
        self.last_sample: Optional[PositionSample] = None
        self.consecutive_failures = 0

    async def read_sample(self, options: PositionOptions) -> PositionSample:
        """Get one fix using termux-location"""
        provider = "gps" if options.high_accuracy else "network"
        request = "once"
        if options.max_cached_age_ms > 0 and self.last_sample is None:
            # A recent cached fix gives a faster initial lock
            request = "last"
        try:
            sample = await self._run(provider, request, options)
            if request == "last" and sample is None:
                sample = await self._run(provider, "once", options)
        except PositionError:
            self.consecutive_failures += 1
            raise
        if sample is None:
            self.consecutive_failures += 1
            raise PositionError(PositionError.POSITION_UNAVAILABLE, "empty termux-location output")
        self.last_sample = sample
        self.consecutive_failures = 0
        return sample

    async def _run(self, provider: str, request: str,
                   options: PositionOptions) -> Optional[PositionSample]:
        try:
            proc = await asyncio.create_subprocess_exec(
                "termux-location", "-p", provider, "-r", request,
                stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE)
        except FileNotFoundError as e:
            raise PositionError(PositionError.POSITION_UNAVAILABLE, "termux-location not found") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=options.timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            proc.kill()
            raise PositionError(PositionError.TIMEOUT) from e

        if proc.returncode != 0:
            error_msg = stderr.decode().strip() if stderr else "unknown error"
            if "permission" in error_msg.lower():
                raise PositionError(PositionError.PERMISSION_DENIED, error_msg)
            raise PositionError(PositionError.POSITION_UNAVAILABLE, error_msg)

        if not stdout or not stdout.strip():
            return None

        try:
            data = json.loads(stdout)
            sample = PositionSample(
                lat=data["latitude"],
                lng=data["longitude"],
                accuracy=data.get("accuracy") or 0,
                timestamp=time.time() * 1000,
                altitude=optional_float(data.get("altitude")),
                altitude_accuracy=optional_float(data.get("vertical_accuracy")),
            )
        except (json.JSONDecodeError, KeyError) as e:
            raise PositionError(PositionError.POSITION_UNAVAILABLE, f"bad termux output: {e}") from e

        if request == "last" and data.get("elapsedMs", 0) > options.max_cached_age_ms:
            return None
        return sample

    def get_status(self) -> str:
        """Get GPS status string"""
        if self.consecutive_failures == 0:
            acc = f", accuracy {self.last_sample.accuracy:.0f}m" if self.last_sample else ""
            return f"GPS OK{acc}"
        else:
            return f"GPS: {self.consecutive_failures} consecutive failures"


class GPSRecorder:
    """Records GPS trace to file"""

    def __init__(self, gps, record_path: str):
        self.gps = gps
        self.record_path = record_path
        self.trace: list[dict] = []
        self.start_time = time.time()

    async def read_sample(self, options: PositionOptions) -> PositionSample:
        """Get a fix and record it, including failures"""
        entry = {"elapsed": time.time() - self.start_time, "timestamp": time.time()}
        try:
            sample = await self.gps.read_sample(options)
        except PositionError as e:
            entry.update({"sample": None, "error": e.code})
            self.trace.append(entry)
            raise
        entry.update({"sample": sample.to_dict(), "error": None})
        self.trace.append(entry)
        return sample

    def get_status(self) -> str:
        return self.gps.get_status()

    def save(self):
        """Save trace to file"""
        with open(self.record_path, "w") as f:
            json.dump({
                "recorded_at": datetime.now().isoformat(),
                "trace": self.trace
            }, f, indent=2)
        print(f"GPS trace saved to {self.record_path} ({len(self.trace)} entries)")


class GPSPlayback:
    """Plays back a recorded GPS trace"""

    def __init__(self, playback_path: str, speed: float = 1.0):
        self.playback_path = playback_path
        self.speed = speed
        self.index = 0
        self.consecutive_failures = 0

        with open(playback_path) as f:
            data = json.load(f)
            self.trace: list[dict] = data["trace"]

    async def read_sample(self, options: PositionOptions) -> PositionSample:
        """Return the next recorded fix, re-stamped with the current time"""
        if self.is_finished():
            raise PositionError(PositionError.POSITION_UNAVAILABLE, "playback finished")

        entry = self.trace[self.index]
        self.index += 1

        if entry.get("sample"):
            sample = PositionSample.from_dict(entry["sample"])
            sample.timestamp = time.time() * 1000
            self.consecutive_failures = 0
            return sample
        self.consecutive_failures += 1
        raise PositionError(entry.get("error") or PositionError.POSITION_UNAVAILABLE,
                            "recorded failure")

    def get_poll_interval(self) -> float:
        """Interval to wait before the next fix, from trace timing and speed"""
        if self.index <= 0 or self.index >= len(self.trace):
            return CONFIG["gps_poll_interval"] / self.speed

        prev_elapsed = self.trace[self.index - 1].get("elapsed", 0)
        curr_elapsed = self.trace[self.index].get("elapsed", 0)
        delta = curr_elapsed - prev_elapsed

        interval = delta / self.speed
        return max(0.0, min(interval, 5.0))

    def is_finished(self) -> bool:
        return self.index >= len(self.trace)

    def get_status(self) -> str:
        progress = f"{self.index}/{len(self.trace)}"
        if self.consecutive_failures == 0:
            return f"Playback OK ({progress})"
        else:
            return f"Playback: {self.consecutive_failures} failures ({progress})"


class PositionWatcher:
    """Continuous positioning subscription over a polled source.

    Each subscription is an asyncio task. Samples and errors are delivered
    one at a time in capture order; nothing is delivered after
    ``unsubscribe``.
    """

    def __init__(self, source, poll_interval: float = CONFIG["gps_poll_interval"], logger=None):
        self.source = source
        self.poll_interval = poll_interval
        self.logger = logger
        self._tasks: dict[int, asyncio.Task] = {}
        self._active: set[int] = set()
        self._next_handle = 1

    def subscribe(self, on_sample: Callable[[PositionSample], None],
                  on_error: Callable[[PositionError], None],
                  options: Optional[PositionOptions] = None) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._active.add(handle)
        self._tasks[handle] = asyncio.get_running_loop().create_task(
            self._watch(handle, on_sample, on_error, options or PositionOptions()))
        return handle

    def unsubscribe(self, handle: Optional[int]):
        if handle is None:
            return
        self._active.discard(handle)
        task = self._tasks.pop(handle, None)
        if task and task is not _current_task():
            task.cancel()

    def is_active(self, handle: int) -> bool:
        return handle in self._active

    def _interval(self) -> float:
        if hasattr(self.source, "get_poll_interval"):
            return self.source.get_poll_interval()
        return self.poll_interval

    async def _watch(self, handle: int, on_sample, on_error, options: PositionOptions):
        while handle in self._active:
            try:
                sample = await self.source.read_sample(options)
            except PositionError as e:
                if handle not in self._active:
                    break
                self._deliver(on_error, e)
            else:
                if handle not in self._active:
                    break
                self._deliver(on_sample, sample)
            if getattr(self.source, "is_finished", lambda: False)():
                if self.logger:
                    self.logger.log("Position source exhausted", {"handle": handle})
                break
            await asyncio.sleep(self._interval())
        self._active.discard(handle)
        self._tasks.pop(handle, None)

    def _deliver(self, callback, value):
        # A failing handler drops one reading, not the subscription
        try:
            callback(value)
        except Exception as e:
            if self.logger:
                self.logger.log("Position handler failed", {"error": repr(e)})


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
