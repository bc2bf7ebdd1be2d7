"""Cancellable contexts, a mockable clock, timestamps and stopwatches.

Time points are integer nanoseconds since the Unix epoch and durations are
integer nanoseconds; the unit constants below help building them.
"""

from __future__ import annotations

import json
import re
import threading
import time as _time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

NANOSECOND = 1
MICROSECOND = 1000 * NANOSECOND
MILLISECOND = 1000 * MICROSECOND
SECOND = 1000 * MILLISECOND
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_INT_RE = re.compile(r"[+-]?[0-9]+")


class ContextCanceled(Exception):
    """The context was cancelled."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class DeadlineExceeded(TimeoutError):
    """The context deadline passed."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class Context:
    """A cancellation signal shared by a tree of contexts.

    Cancelling a context cancels every context derived from it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._err_type: Optional[type[Exception]] = None
        self._children: list[Context] = []
        self._parent: Optional[Context] = None
        self._timer: Optional[threading.Timer] = None

    @classmethod
    def background(cls) -> "Context":
        """Return a new root context."""
        return cls()

    def _derive(self) -> "Context":
        child = Context()
        with self._lock:
            err_type = self._err_type
            if err_type is None:
                child._parent = self
                self._children.append(child)
        if err_type is not None:
            child._finish(err_type)
        return child

    def _forget(self, child: "Context") -> None:
        with self._lock:
            try:
                self._children.remove(child)
            except ValueError:
                pass

    def _finish(self, err_type: type[Exception]) -> None:
        with self._lock:
            if self._err_type is not None:
                return
            self._err_type = err_type
            children, self._children = self._children, []
            timer, self._timer = self._timer, None
            parent, self._parent = self._parent, None
        self._done.set()
        if timer is not None:
            timer.cancel()
        if parent is not None:
            parent._forget(self)
        for child in children:
            child._finish(err_type)

    def with_cancel(self) -> "Context":
        """Return a child context that can be cancelled on its own."""
        return self._derive()

    def with_timeout(self, timeout: int) -> "Context":
        """Return a child context cancelled once timeout nanoseconds pass."""
        child = self._derive()
        if timeout <= 0:
            child._finish(DeadlineExceeded)
            return child
        timer = threading.Timer(timeout / SECOND, child._finish, args=(DeadlineExceeded,))
        timer.daemon = True
        with child._lock:
            if child._err_type is not None:
                return child
            child._timer = timer
        timer.start()
        return child

    def cancel(self) -> None:
        """Cancel this context and all contexts derived from it."""
        self._finish(ContextCanceled)

    def err(self) -> Optional[Exception]:
        """Return why the context is done, or None while it is still live."""
        err_type = self._err_type
        return err_type() if err_type is not None else None

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[int] = None) -> bool:
        """Block until the context is done or timeout nanoseconds pass.

        Returns True when the context is done.
        """
        if timeout is None:
            return self._done.wait()
        return self._done.wait(max(timeout, 0) / SECOND)


def sleep(ctx: Context, duration: int) -> None:
    """Sleep for duration nanoseconds, raising the context error if it ends first."""
    if ctx.wait(duration):
        err = ctx.err()
        if err is not None:
            raise err


def _system_now() -> int:
    return _time.time_ns()


_now_fn: Callable[[], int] = _system_now


def now() -> int:
    """Return the current time in nanoseconds since the Unix epoch."""
    return _now_fn()


class _MockedNow:
    def __init__(self, previous: Callable[[], int]) -> None:
        self._previous = previous

    def close(self) -> None:
        global _now_fn
        _now_fn = self._previous

    def __enter__(self) -> "_MockedNow":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def mock_now(fn: Callable[[], int]) -> _MockedNow:
    """Make now() call fn until the returned object is closed."""
    global _now_fn
    mocked = _MockedNow(_now_fn)
    _now_fn = fn
    return mocked


def _atoi(text: bytes | str) -> int:
    if isinstance(text, (bytes, bytearray)):
        text = bytes(text).decode()
    if not _INT_RE.fullmatch(text):
        raise ValueError(f"invalid syntax: {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"value out of range: {text!r}")
    return value


@dataclass(frozen=True)
class Timestamp:
    """A time point serialised as whole seconds since the epoch."""

    time: int

    @property
    def unix(self) -> int:
        return self.time // SECOND

    def marshal_text(self) -> bytes:
        return str(self.unix).encode()

    @classmethod
    def unmarshal_text(cls, text: bytes | str) -> "Timestamp":
        return cls(_atoi(text) * SECOND)


@dataclass(frozen=True)
class TimestampNano:
    """A time point serialised as nanoseconds since the epoch."""

    time: int

    @property
    def unix_nano(self) -> int:
        return self.time

    def marshal_text(self) -> bytes:
        return str(self.time).encode()

    @classmethod
    def unmarshal_text(cls, text: bytes | str) -> "TimestampNano":
        return cls(_atoi(text))


@dataclass
class Stopwatch:
    """Measures nested steps; starting a step ends the previous sibling."""

    id: str = ""
    created_at: int = field(default_factory=now)
    done_at: Optional[int] = None
    children: list["Stopwatch"] = field(default_factory=list)

    def new_child(self, id: str) -> "Stopwatch":
        child = Stopwatch(id)
        self._propagate_done(child.created_at)
        self.children.append(child)
        return child

    def _propagate_done(self, done_at: int) -> None:
        node = self
        while node.children:
            last = node.children[-1]
            if last.done_at is None:
                last.done_at = done_at
            node = last

    def done(self) -> None:
        if self.done_at is None:
            self.done_at = now()
        self._propagate_done(self.done_at)

    def find_child(self, id: str, *args: str) -> Optional["Stopwatch"]:
        """Find a descendant following the given ids; None if not found."""
        return self._child([id, *args])

    def _child(self, ids: list[str]) -> Optional["Stopwatch"]:
        for idx, wanted in enumerate(ids):
            for child in self.children:
                if child.id != wanted:
                    continue
                if idx == len(ids) - 1:
                    return child
                return child._child(ids[idx:])
        return None

    def duration(self) -> int:
        if self.done_at is not None:
            return self.done_at - self.created_at
        return now() - self.created_at

    def merge(self, other: "Stopwatch") -> None:
        """Append the children of other to this stopwatch."""
        if not other.children:
            return
        self._propagate_done(other.children[0].created_at)
        self.children.extend(other.children)

    def dump(self) -> str:
        return "\n".join(self._dump_lines("", self.created_at))

    def _dump_lines(self, indent: str, root_created_at: int) -> list[str]:
        if indent == "":
            lines = [duration_minimalist_format(self.duration())]
        else:
            lines = [
                f"{indent}[{duration_minimalist_format(self.created_at - root_created_at)}]"
                f"{self.id}: {duration_minimalist_format(self.duration())}"
            ]
        for child in self.children:
            lines.extend(child._dump_lines(indent + "  ", root_created_at))
        return lines

    def _to_dict(self) -> dict[str, Any]:
        return {
            "children": [c._to_dict() for c in self.children],
            "created_at": self.created_at,
            "done_at": self.done_at if self.done_at is not None else 0,
            "id": self.id,
        }

    def to_json(self) -> str:
        return json.dumps(self._to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def _from_dict(cls, data: Any) -> "Stopwatch":
        if not isinstance(data, dict):
            raise ValueError("stopwatch must be a JSON object")
        created_at = _json_int(data.get("created_at", 0))
        done_at = _json_int(data.get("done_at", 0))
        children = data.get("children") or []
        if not isinstance(children, list):
            raise ValueError("stopwatch children must be a JSON array")
        return cls(
            id=str(data.get("id", "")),
            created_at=created_at,
            done_at=done_at or None,
            children=[cls._from_dict(c) for c in children],
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> "Stopwatch":
        return cls._from_dict(json.loads(text))


def _json_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"invalid timestamp: {value!r}")
    return value


def duration_minimalist_format(d: int) -> str:
    """Format a nanosecond duration with a single, truncated unit."""
    if d < MICROSECOND:
        return f"{d}ns"
    if d < MILLISECOND:
        return f"{d // MICROSECOND}µs"
    if d < SECOND:
        return f"{d // MILLISECOND}ms"
    return f"{d // SECOND}s"