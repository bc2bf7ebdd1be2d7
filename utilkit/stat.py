"""Periodic statistics collection and atomic counters feeding it."""

from __future__ import annotations

import threading
import time as _time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from utilkit.timing import SECOND, Context, now

_UINT64_MASK = (1 << 64) - 1


@dataclass(eq=False)
class StatMetadata:
    """Describes a stat; stats are keyed by the identity of their metadata."""

    description: str = ""
    label: str = ""
    name: str = ""
    unit: str = ""


@dataclass
class StatOptions:
    """A stat: its metadata and a valuer.

    The valuer is either an object with a ``value(delta)`` method or a
    callable taking the delta in nanoseconds.
    """

    metadata: StatMetadata
    valuer: Any = None


@dataclass
class StatValue:
    metadata: StatMetadata
    value: Any


@dataclass
class StaterOptions:
    handle_func: Optional[Callable[[list[StatValue]], Any]] = None
    period: int = 0


def _compute(valuer: Any, delta: int) -> tuple[bool, Any]:
    method = getattr(valuer, "value", None)
    if callable(method):
        return True, method(delta)
    if callable(valuer):
        return True, valuer(delta)
    return False, None


class Stater:
    """Computes all registered stats every period and hands them over."""

    def __init__(self, options: Optional[StaterOptions] = None) -> None:
        options = options or StaterOptions()
        self._handle = options.handle_func
        self._period = options.period
        self._lock = threading.Lock()
        self._stats: dict[StatMetadata, StatOptions] = {}
        self._state_lock = threading.Lock()
        self._running = False
        self._ctx: Optional[Context] = None

    def start(self, ctx: Context) -> None:
        """Collect stats until ctx or the stater is stopped. Blocks."""
        if ctx.err() is not None:
            return
        if self._period <= 0:
            raise ValueError("stater period must be positive")
        with self._state_lock:
            if self._running:
                return
            self._running = True
            self._ctx = run_ctx = ctx.with_cancel()
        try:
            self._loop(run_ctx)
        finally:
            with self._state_lock:
                self._running = False

    def _loop(self, ctx: Context) -> None:
        last_stat_at = now()
        next_tick = _time.monotonic_ns() + self._period
        while True:
            if ctx.wait(max(next_tick - _time.monotonic_ns(), 0)):
                return
            next_tick += self._period
            current = _time.monotonic_ns()
            if next_tick <= current:
                next_tick = current + self._period

            n = now()
            delta = n - last_stat_at
            last_stat_at = n

            stats = []
            with self._lock:
                for options in self._stats.values():
                    ok, value = _compute(options.valuer, delta)
                    if ok:
                        stats.append(StatValue(options.metadata, value))

            if self._handle is not None:
                threading.Thread(target=self._handle, args=(stats,), daemon=True).start()

    def stop(self) -> None:
        with self._state_lock:
            ctx = self._ctx
        if ctx is not None:
            ctx.cancel()

    def add_stats(self, *args: StatOptions) -> None:
        with self._lock:
            for options in args:
                self._stats[options.metadata] = options

    def del_stats(self, *args: StatOptions) -> None:
        with self._lock:
            for options in args:
                self._stats.pop(options.metadata, None)


class AtomicCounter:
    """A thread-safe unsigned 64-bit counter."""

    def __init__(self, value: int = 0) -> None:
        self._value = value & _UINT64_MASK
        self._lock = threading.Lock()

    def add(self, delta: int) -> int:
        with self._lock:
            self._value = (self._value + delta) & _UINT64_MASK
            return self._value

    def load(self) -> int:
        with self._lock:
            return self._value


class AtomicDuration:
    """A thread-safe accumulated duration in nanoseconds."""

    def __init__(self, d: int = 0) -> None:
        self._d = d
        self._lock = threading.Lock()

    def add(self, delta: int) -> None:
        with self._lock:
            self._d += delta

    def duration(self) -> int:
        with self._lock:
            return self._d


class AtomicUint64RateStat:
    """Rate per second at which a counter grows."""

    def __init__(self, counter: AtomicCounter) -> None:
        self._counter = counter
        self._last: Optional[int] = None

    def value(self, delta: int) -> float:
        current = self._counter.load()
        last = self._last or 0
        self._last = current
        if delta <= 0:
            return 0.0
        return ((current - last) & _UINT64_MASK) / (delta / SECOND)


class AtomicDurationPercentageStat:
    """Share of elapsed time, in percent, accumulated in a duration."""

    def __init__(self, d: AtomicDuration) -> None:
        self._d = d
        self._last: Optional[int] = None

    def value(self, delta: int) -> float:
        current = self._d.duration()
        last = self._last or 0
        self._last = current
        if delta <= 0:
            return 0.0
        return (current - last) / delta * 100


class AtomicDurationAvgStat:
    """Average added duration per counted event since the last call."""

    def __init__(self, d: AtomicDuration, count: AtomicCounter) -> None:
        self._d = d
        self._count = count
        self._last: Optional[int] = None
        self._last_count: Optional[int] = None

    def value(self, delta: int) -> int:
        current = self._d.duration()
        current_count = self._count.load()
        last = self._last or 0
        last_count = self._last_count or 0
        self._last = current
        self._last_count = current_count
        diff = (current_count - last_count) & _UINT64_MASK
        if diff == 0:
            return 0
        return int((current - last) / diff)