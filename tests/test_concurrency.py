import sys
import threading
import time

import pytest

from utilkit.concurrency import (
    STAT_NAME_WORK_RATIO,
    BufferPool,
    Chan,
    ChanAddStrategy,
    ChanOptions,
    ChanOrder,
    DebugMutex,
    Eventer,
    FIFOMutex,
    ThreadLimiter,
    debug_mutex_with_deadlock_detection,
    debug_mutex_with_lock_logging,
)
from utilkit.logger import LoggerLevel
from utilkit.timing import MILLISECOND, Context, ContextCanceled


def _run_blocking(fn, *args, timeout=5.0):
    t = threading.Thread(target=fn, args=args, daemon=True)
    t.start()
    t.join(timeout)
    return not t.is_alive()


def test_chan_drops_pending_when_stopped():
    c = Chan(ChanOptions())
    o = []

    def first():
        o.append(1)
        c.stop()

    c.add(first)
    c.add(lambda: o.append(2))
    assert _run_blocking(c.start, Context.background())
    assert o == [1]


def test_chan_process_all():
    c = Chan(ChanOptions(process_all=True))
    o = []

    def first():
        o.append(1)
        c.stop()

    c.add(first)
    c.add(lambda: o.append(2))
    assert _run_blocking(c.start, Context.background())
    assert o == [1, 2]


def test_chan_default_order():
    c = Chan(ChanOptions(process_all=True))
    o = []

    def second():
        o.append(2)
        c.stop()

    c.add(lambda: o.append(1))
    c.add(second)
    assert _run_blocking(c.start, Context.background())
    assert o == [1, 2]


def test_chan_filo_order():
    c = Chan(ChanOptions(order=ChanOrder.FILO, process_all=True))
    o = []

    def second():
        o.append(2)
        c.stop()

    c.add(lambda: o.append(1))
    c.add(second)
    assert _run_blocking(c.start, Context.background())
    assert o == [2, 1]


def test_chan_block_when_started():
    c = Chan(ChanOptions(add_strategy=ChanAddStrategy.BLOCK_WHEN_STARTED))
    o = []
    runner = threading.Thread(target=c.start, args=(Context.background(),), daemon=True)
    runner.start()
    c.add(lambda: o.append(1))
    o.append(2)
    c.add(lambda: o.append(3))
    o.append(4)
    c.stop()
    runner.join(5)
    assert not runner.is_alive()
    assert o == [1, 2, 3, 4]


def test_chan_reset_drops_queued():
    c = Chan(ChanOptions())
    o = []
    c.add(lambda: o.append(1))
    c.add(lambda: o.append(2))
    c.reset()

    def last():
        o.append(3)
        c.stop()

    c.add(last)
    assert _run_blocking(c.start, Context.background())
    assert o == [3]


def test_chan_stops_when_parent_context_cancelled():
    c = Chan(ChanOptions())
    ctx = Context.background().with_cancel()
    o = []

    def first():
        o.append(1)
        ctx.cancel()

    c.add(first)
    c.add(lambda: o.append(2))
    assert _run_blocking(c.start, ctx)
    assert o == [1]
    assert ctx.done is True
    assert isinstance(ctx.err(), ContextCanceled)


def test_chan_stats_and_stat_options():
    c = Chan(ChanOptions())

    def work():
        time.sleep(0.01)
        c.stop()

    c.add(work)
    assert _run_blocking(c.start, Context.background())
    work_duration = c.stats().work_duration
    assert work_duration >= 10 * MILLISECOND
    options = c.stat_options()
    assert len(options) == 1
    assert options[0].metadata.name == STAT_NAME_WORK_RATIO
    assert options[0].metadata.unit == "%"
    assert options[0].valuer.value(work_duration * 2) == pytest.approx(50.0)


def test_buffer_pool_reuses_emptied_buffers():
    pool = BufferPool()
    item = pool.new()
    item.write(b"hello")
    assert item.getvalue() == b"hello"
    buffer = item.buffer
    item.close()
    again = pool.new()
    assert again.buffer is buffer
    assert again.getvalue() == b""


def test_thread_limiter_caps_concurrency():
    limiter = ThreadLimiter(2)
    lock = threading.Lock()
    state = {"current": 0, "max": 0}
    finished = threading.Semaphore(0)
    n = 4

    def fn():
        with lock:
            state["current"] += 1
            state["max"] = max(state["max"], state["current"])
        time.sleep(0.02)
        with lock:
            state["current"] -= 1
        finished.release()

    try:
        for _ in range(n):
            limiter.do(fn)
        for _ in range(n):
            assert finished.acquire(timeout=5)
    finally:
        limiter.close()
    assert state["max"] == 2
    assert state["current"] == 0
    with pytest.raises(ContextCanceled):
        limiter.do(fn)


def test_thread_limiter_closed_raises():
    limiter = ThreadLimiter(1)
    limiter.close()
    with pytest.raises(ContextCanceled):
        limiter.do(lambda: None)


def test_eventer():
    e = Eventer(ChanOptions(process_all=True))
    o = []
    e.on("1", o.append)
    e.on("2", o.append)

    def dispatcher():
        time.sleep(0.01)
        e.dispatch("1", "1.1")
        e.dispatch("2", "2")
        e.dispatch("1", "1.2")
        e.dispatch("3", "ignored")
        e.stop()

    threading.Thread(target=dispatcher, daemon=True).start()
    assert _run_blocking(e.start, Context.background())
    assert o == ["1.1", "2", "1.2"]


class _StdLogger:
    def __init__(self):
        self.lock = threading.Lock()
        self.entries = []

    def _add(self, text):
        with self.lock:
            self.entries.append(text)

    def fatal(self, *args):
        self._add("fatal: " + "".join(str(a) for a in args))

    def fatalf(self, fmt, *args):
        self._add("fatal: " + fmt % args)

    def print(self, *args):
        self._add("print: " + "".join(str(a) for a in args))

    def printf(self, fmt, *args):
        self._add("print: " + fmt % args)


def test_debug_mutex_deadlock_detection():
    logger = _StdLogger()
    m = DebugMutex("test", logger, debug_mutex_with_deadlock_detection(MILLISECOND))
    first_line = sys._getframe().f_lineno + 1
    m.lock()

    def release():
        time.sleep(0.1)
        m.unlock()

    threading.Thread(target=release, daemon=True).start()
    second_line = sys._getframe().f_lineno + 1
    m.lock()
    m.unlock()
    with logger.lock:
        entries = list(logger.entries)
    assert len(entries) == 1
    assert f"test_concurrency.py:{first_line}" in entries[0]
    assert f"test_concurrency.py:{second_line}" in entries[0]
    assert "test mutex timed out" in entries[0]


def test_debug_mutex_lock_logging():
    logger = _StdLogger()
    m = DebugMutex("test", logger, debug_mutex_with_lock_logging(LoggerLevel.INFO))
    m.lock()
    m.unlock()
    assert len(logger.entries) == 3
    assert logger.entries[0].startswith("print: requesting lock for test at ")
    assert logger.entries[1].startswith("print: lock acquired for test at ")
    assert logger.entries[2] == "print: unlock executed for test"


def test_debug_mutex_readers_share():
    logger = _StdLogger()
    m = DebugMutex("test", logger)
    m.rlock()
    m.rlock()
    acquired = threading.Event()

    def writer():
        m.lock()
        acquired.set()
        m.unlock()

    threading.Thread(target=writer, daemon=True).start()
    assert not acquired.wait(0.05)
    m.runlock()
    m.runlock()
    assert acquired.wait(5)
    assert logger.entries == []


def test_debug_mutex_unlock_unlocked_raises():
    m = DebugMutex("test")
    with pytest.raises(RuntimeError):
        m.unlock()


def test_fifo_mutex_order():
    m = FIFOMutex()
    r = []
    m.lock()
    threads = []

    def worker(i):
        m.lock()
        r.append(i)
        m.unlock()

    for i in range(1, 11):
        t = threading.Thread(target=worker, args=(i,), daemon=True)
        t.start()
        threads.append(t)
        time.sleep(0.02)
    m.unlock()
    for t in threads:
        t.join(5)
    assert all(not t.is_alive() for t in threads)
    assert r == list(range(1, 11))
    with pytest.raises(RuntimeError):
        m.unlock()


def test_fifo_mutex_unlock_unlocked_raises():
    m = FIFOMutex()
    with pytest.raises(RuntimeError):
        m.unlock()