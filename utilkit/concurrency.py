"""Ordered work queues, thread limiting, events and instrumented mutexes."""

from __future__ import annotations

import enum
import io
import sys
import threading
import time as _time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

from utilkit.logger import LoggerLevel, adapt_std_logger
from utilkit.stat import (
    AtomicDuration,
    AtomicDurationPercentageStat,
    StatMetadata,
    StatOptions,
)
from utilkit.timing import Context, ContextCanceled, DeadlineExceeded

STAT_NAME_WORK_RATIO = "utilkit.work.ratio"


class ChanAddStrategy(str, enum.Enum):
    """When Chan.add blocks."""

    BLOCK_WHEN_STARTED = "block.when.started"
    NO_BLOCK = "no.block"


class ChanOrder(str, enum.Enum):
    """Order in which a Chan runs its funcs."""

    FIFO = "fifo"
    FILO = "filo"


@dataclass
class ChanOptions:
    """Chan settings.

    With process_all, funcs still queued when the chan is stopped are run
    anyway; otherwise they are dropped. Nothing can be added once stopped.
    """

    add_strategy: ChanAddStrategy = ChanAddStrategy.NO_BLOCK
    order: ChanOrder = ChanOrder.FIFO
    process_all: bool = False


@dataclass(frozen=True)
class ChanStats:
    work_duration: int


class Chan:
    """Runs queued funcs one after another in a chosen order."""

    def __init__(self, options: Optional[ChanOptions] = None) -> None:
        self._options = options or ChanOptions()
        self._cond = threading.Condition()
        self._fs: deque[Callable[[], Any]] = deque()
        self._ctx: Optional[Context] = None
        self._running = False
        self._work_duration = AtomicDuration(0)

    def start(self, ctx: Context) -> None:
        """Run queued funcs, waiting for new ones, until stopped. Blocks."""
        with self._cond:
            if self._running:
                return
            self._running = True
            self._ctx = run_ctx = ctx.with_cancel()
        threading.Thread(target=self._watch, args=(run_ctx,), daemon=True).start()
        try:
            while True:
                with self._cond:
                    while True:
                        pending = len(self._fs)
                        if run_ctx.err() is not None and (
                            not self._options.process_all or pending == 0
                        ):
                            return
                        if pending:
                            fn = self._fs.popleft()
                            break
                        self._cond.wait()
                started = _time.monotonic_ns()
                fn()
                self._work_duration.add(_time.monotonic_ns() - started)
        finally:
            with self._cond:
                self._running = False

    def _watch(self, ctx: Context) -> None:
        ctx.wait()
        with self._cond:
            self._cond.notify_all()

    def stop(self) -> None:
        with self._cond:
            ctx = self._ctx
        if ctx is not None:
            ctx.cancel()

    def add(self, fn: Callable[[], Any]) -> None:
        """Queue fn; with BLOCK_WHEN_STARTED, wait until it has run."""
        with self._cond:
            if self._ctx is not None and self._ctx.err() is not None:
                return

        executed: Optional[threading.Event] = None
        item = fn
        if self._options.add_strategy == ChanAddStrategy.BLOCK_WHEN_STARTED:
            executed = threading.Event()

            def item() -> None:
                try:
                    fn()
                finally:
                    executed.set()

        with self._cond:
            if self._options.order == ChanOrder.FILO:
                self._fs.appendleft(item)
            else:
                self._fs.append(item)
            self._cond.notify_all()

        if executed is not None:
            executed.wait()

    def reset(self) -> None:
        """Drop every queued func."""
        with self._cond:
            self._fs.clear()

    def stats(self) -> ChanStats:
        return ChanStats(work_duration=self._work_duration.duration())

    def stat_options(self) -> list[StatOptions]:
        return [
            StatOptions(
                metadata=StatMetadata(
                    description="Percentage of time doing work",
                    label="Work ratio",
                    name=STAT_NAME_WORK_RATIO,
                    unit="%",
                ),
                valuer=AtomicDurationPercentageStat(self._work_duration),
            )
        ]


class BufferPool:
    """A pool of reusable in-memory byte buffers."""

    def __init__(self) -> None:
        self._free: list[io.BytesIO] = []
        self._lock = threading.Lock()

    def new(self) -> "BufferPoolItem":
        with self._lock:
            buffer = self._free.pop() if self._free else io.BytesIO()
        return BufferPoolItem(buffer, self)

    def _put(self, buffer: io.BytesIO) -> None:
        with self._lock:
            self._free.append(buffer)


class BufferPoolItem:
    """A buffer borrowed from a pool; closing it hands it back emptied."""

    def __init__(self, buffer: io.BytesIO, pool: BufferPool) -> None:
        self.buffer = buffer
        self._pool = pool
        self._closed = False

    def write(self, data: bytes) -> int:
        return self.buffer.write(data)

    def getvalue(self) -> bytes:
        return self.buffer.getvalue()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.buffer.seek(0)
        self.buffer.truncate(0)
        self._pool._put(self.buffer)

    def __enter__(self) -> "BufferPoolItem":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class ThreadLimiter:
    """Runs funcs in threads, never more than max_workers at once."""

    def __init__(self, max_workers: int = 1) -> None:
        self._max = max_workers if max_workers > 0 else 1
        self._busy = 0
        self._closed = False
        self._cond = threading.Condition()

    def do(self, fn: Callable[[], Any]) -> None:
        """Run fn in a thread once a slot is free; raises once closed."""
        with self._cond:
            if self._closed:
                raise ContextCanceled()
            while self._busy >= self._max and not self._closed:
                self._cond.wait()
            if self._closed:
                raise ContextCanceled()
            self._busy += 1
        threading.Thread(target=self._run, args=(fn,), daemon=True).start()

    def _run(self, fn: Callable[[], Any]) -> None:
        try:
            fn()
        finally:
            with self._cond:
                self._busy -= 1
                self._cond.notify()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __enter__(self) -> "ThreadLimiter":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class Eventer:
    """Dispatches named payloads to handlers through a Chan."""

    def __init__(self, chan_options: Optional[ChanOptions] = None) -> None:
        self._chan = Chan(chan_options)
        self._handlers: dict[str, list[Callable[[Any], Any]]] = {}
        self._lock = threading.Lock()

    def on(self, name: str, handler: Callable[[Any], Any]) -> None:
        with self._lock:
            self._handlers.setdefault(name, []).append(handler)

    def dispatch(self, name: str, payload: Any) -> None:
        with self._lock:
            for handler in self._handlers.get(name, []):
                self._chan.add(lambda h=handler: h(payload))

    def start(self, ctx: Context) -> None:
        """Handle events until stopped. Blocks."""
        self._chan.start(ctx)

    def stop(self) -> None:
        self._chan.stop()

    def reset(self) -> None:
        self._chan.reset()


class _RWLock:
    """A reader/writer lock where waiting writers hold off new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            if self._readers == 0:
                raise RuntimeError("read unlock of a mutex not read locked")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            if not self._writer:
                raise RuntimeError("unlock of an unlocked mutex")
            self._writer = False
            self._cond.notify_all()


DebugMutexOpt = Callable[["DebugMutex"], None]


def debug_mutex_with_lock_logging(level: LoggerLevel) -> DebugMutexOpt:
    """Log every lock request, acquisition and release at level."""

    def apply(m: "DebugMutex") -> None:
        m._level = LoggerLevel(level)

    return apply


def debug_mutex_with_deadlock_detection(timeout: int) -> DebugMutexOpt:
    """Log an error when a lock waits longer than timeout nanoseconds."""

    def apply(m: "DebugMutex") -> None:
        m._timeout = timeout

    return apply


class DebugMutex:
    """A reader/writer mutex that can log its use to help find deadlocks."""

    def __init__(self, name: str, logger: Any = None, *opts: DebugMutexOpt) -> None:
        self._name = name
        self._logger = adapt_std_logger(logger)
        self._level: Optional[LoggerLevel] = None
        self._timeout = 0
        self._lock = _RWLock()
        self._last_caller = ""
        self._last_caller_lock = threading.Lock()
        for opt in opts:
            opt(self)

    @staticmethod
    def _caller() -> str:
        try:
            frame = sys._getframe(2)
        except ValueError:
            return ""
        return f"{frame.f_code.co_filename}:{frame.f_lineno}"

    def _log(self, fmt: str, *args: Any) -> None:
        if self._level is None:
            return
        self._logger.writef(self._level, fmt, *args)

    def _watch_timeout(self, caller: str, fn: Callable[[], None]) -> None:
        if self._timeout <= 0:
            fn()
            return
        ctx = Context.background().with_timeout(self._timeout)

        def watch() -> None:
            ctx.wait()
            if isinstance(ctx.err(), DeadlineExceeded):
                with self._last_caller_lock:
                    last_caller = self._last_caller
                self._logger.errorf(
                    "%s mutex timed out at %s with last caller at %s",
                    self._name,
                    caller,
                    last_caller,
                )

        threading.Thread(target=watch, daemon=True).start()
        try:
            fn()
        finally:
            ctx.cancel()

    def _acquired(self, caller: str) -> None:
        with self._last_caller_lock:
            self._last_caller = caller

    def lock(self) -> None:
        caller = self._caller()
        self._log("requesting lock for %s at %s", self._name, caller)
        self._watch_timeout(caller, self._lock.acquire_write)
        self._log("lock acquired for %s at %s", self._name, caller)
        self._acquired(caller)

    def unlock(self) -> None:
        self._lock.release_write()
        self._log("unlock executed for %s", self._name)

    def rlock(self) -> None:
        caller = self._caller()
        self._log("requesting rlock for %s at %s", self._name, caller)
        self._watch_timeout(caller, self._lock.acquire_read)
        self._log("rlock acquired for %s at %s", self._name, caller)
        self._acquired(caller)

    def runlock(self) -> None:
        self._lock.release_read()
        self._log("unlock executed for %s", self._name)


class FIFOMutex:
    """A mutex handed to waiters in the order they asked for it."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._busy = False
        self._waiting: deque[threading.Event] = deque()

    def lock(self) -> None:
        with self._lock:
            if not self._busy:
                self._busy = True
                return
            turn = threading.Event()
            self._waiting.append(turn)
        turn.wait()

    def unlock(self) -> None:
        with self._lock:
            if not self._busy:
                raise RuntimeError("unlock of an unlocked mutex")
            if not self._waiting:
                self._busy = False
                return
            self._waiting.popleft().set()

    def __enter__(self) -> "FIFOMutex":
        self.lock()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.unlock()