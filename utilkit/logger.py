"""Logger levels and adapters that turn partial loggers into complete ones."""

from __future__ import annotations

import enum
from typing import Any, Callable


class LoggerLevel(enum.IntEnum):
    """Severity of a log message."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3
    FATAL = 4

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def from_string(cls, s: str) -> "LoggerLevel":
        """Parse a level name; anything unknown is INFO."""
        return {
            "debug": cls.DEBUG,
            "error": cls.ERROR,
            "fatal": cls.FATAL,
            "warn": cls.WARN,
        }.get(s, cls.INFO)

    def marshal_text(self) -> bytes:
        return str(self).encode()

    @classmethod
    def unmarshal_text(cls, b: bytes | str) -> "LoggerLevel":
        if isinstance(b, (bytes, bytearray)):
            b = bytes(b).decode()
        return cls.from_string(b)


_STD = ("fatal", "fatalf", "print", "printf")
_SEVERITY = ("debug", "debugf", "error", "errorf", "info", "infof", "warn", "warnf")
_SEVERITY_CTX = (
    "debug_c",
    "debug_cf",
    "error_c",
    "error_cf",
    "fatal_c",
    "fatal_cf",
    "info_c",
    "info_cf",
    "warn_c",
    "warn_cf",
)
_WRITE = ("write", "writef")
_WRITE_CTX = ("write_c", "write_cf")
_SLOTS = frozenset(_STD + _SEVERITY + _SEVERITY_CTX + _WRITE + _WRITE_CTX)


def _level_method(level: Any) -> str:
    try:
        lvl = LoggerLevel(level)
    except ValueError:
        return "info"
    if lvl is LoggerLevel.INFO:
        return "info"
    return str(lvl)


class CompleteLogger:
    """A logger offering every severity, context and write variant.

    Each method can be backed by a handler given at construction; methods
    without a handler fall back on a simpler method, ending at ``print`` and
    ``printf``, which do nothing by default.
    """

    def __init__(self, **handlers: Callable[..., Any] | None) -> None:
        unknown = set(handlers) - _SLOTS
        if unknown:
            raise TypeError(f"unknown logger handlers: {', '.join(sorted(unknown))}")
        self._handlers = {k: v for k, v in handlers.items() if v is not None}

    def _dispatch(self, name: str, fallback: Callable[..., Any] | None, *args: Any) -> None:
        handler = self._handlers.get(name)
        if handler is not None:
            handler(*args)
        elif fallback is not None:
            fallback(*args)

    def print(self, *args: Any) -> None:
        self._dispatch("print", None, *args)

    def printf(self, fmt: str, *args: Any) -> None:
        self._dispatch("printf", None, fmt, *args)

    def debug(self, *args: Any) -> None:
        self._dispatch("debug", self.print, *args)

    def debugf(self, fmt: str, *args: Any) -> None:
        self._dispatch("debugf", self.printf, fmt, *args)

    def info(self, *args: Any) -> None:
        self._dispatch("info", self.print, *args)

    def infof(self, fmt: str, *args: Any) -> None:
        self._dispatch("infof", self.printf, fmt, *args)

    def warn(self, *args: Any) -> None:
        self._dispatch("warn", self.print, *args)

    def warnf(self, fmt: str, *args: Any) -> None:
        self._dispatch("warnf", self.printf, fmt, *args)

    def error(self, *args: Any) -> None:
        self._dispatch("error", self.print, *args)

    def errorf(self, fmt: str, *args: Any) -> None:
        self._dispatch("errorf", self.printf, fmt, *args)

    def fatal(self, *args: Any) -> None:
        self._dispatch("fatal", self.print, *args)

    def fatalf(self, fmt: str, *args: Any) -> None:
        self._dispatch("fatalf", self.printf, fmt, *args)

    def _ctx(self, name: str, fallback: Callable[..., Any], ctx: Any, *args: Any) -> None:
        handler = self._handlers.get(name)
        if handler is not None:
            handler(ctx, *args)
        else:
            fallback(*args)

    def debug_c(self, ctx: Any, *args: Any) -> None:
        self._ctx("debug_c", self.debug, ctx, *args)

    def debug_cf(self, ctx: Any, fmt: str, *args: Any) -> None:
        self._ctx("debug_cf", self.debugf, ctx, fmt, *args)

    def info_c(self, ctx: Any, *args: Any) -> None:
        self._ctx("info_c", self.info, ctx, *args)

    def info_cf(self, ctx: Any, fmt: str, *args: Any) -> None:
        self._ctx("info_cf", self.infof, ctx, fmt, *args)

    def warn_c(self, ctx: Any, *args: Any) -> None:
        self._ctx("warn_c", self.warn, ctx, *args)

    def warn_cf(self, ctx: Any, fmt: str, *args: Any) -> None:
        self._ctx("warn_cf", self.warnf, ctx, fmt, *args)

    def error_c(self, ctx: Any, *args: Any) -> None:
        self._ctx("error_c", self.error, ctx, *args)

    def error_cf(self, ctx: Any, fmt: str, *args: Any) -> None:
        self._ctx("error_cf", self.errorf, ctx, fmt, *args)

    def fatal_c(self, ctx: Any, *args: Any) -> None:
        self._ctx("fatal_c", self.fatal, ctx, *args)

    def fatal_cf(self, ctx: Any, fmt: str, *args: Any) -> None:
        self._ctx("fatal_cf", self.fatalf, ctx, fmt, *args)

    def write(self, level: Any, *args: Any) -> None:
        handler = self._handlers.get("write")
        if handler is not None:
            handler(level, *args)
        else:
            getattr(self, _level_method(level))(*args)

    def writef(self, level: Any, fmt: str, *args: Any) -> None:
        handler = self._handlers.get("writef")
        if handler is not None:
            handler(level, fmt, *args)
        else:
            getattr(self, _level_method(level) + "f")(fmt, *args)

    def write_c(self, ctx: Any, level: Any, *args: Any) -> None:
        handler = self._handlers.get("write_c")
        if handler is not None:
            handler(ctx, level, *args)
        else:
            getattr(self, _level_method(level) + "_c")(ctx, *args)

    def write_cf(self, ctx: Any, level: Any, fmt: str, *args: Any) -> None:
        handler = self._handlers.get("write_cf")
        if handler is not None:
            handler(ctx, level, fmt, *args)
        else:
            getattr(self, _level_method(level) + "_cf")(ctx, fmt, *args)


def _methods(obj: Any, names: tuple[str, ...]) -> dict[str, Callable[..., Any]] | None:
    found = {name: getattr(obj, name, None) for name in names}
    if all(callable(v) for v in found.values()):
        return found
    return None


def _is_complete(obj: Any) -> bool:
    return isinstance(obj, CompleteLogger) or _methods(obj, tuple(sorted(_SLOTS))) is not None


def adapt_std_logger(logger: Any) -> Any:
    """Wrap a logger with fatal/fatalf/print/printf into a complete logger."""
    if logger is None:
        return CompleteLogger()
    if _is_complete(logger):
        return logger
    handlers = _methods(logger, _STD)
    if handlers is None:
        raise TypeError("logger must provide fatal, fatalf, print and printf")
    for group in (_SEVERITY, _SEVERITY_CTX, _WRITE, _WRITE_CTX):
        extra = _methods(logger, group)
        if extra is not None:
            handlers.update(extra)
    return CompleteLogger(**handlers)


_TEST = ("error", "errorf", "fatal", "fatalf", "log", "logf")


def adapt_test_logger(logger: Any) -> Any:
    """Wrap a test logger with error/fatal/log variants into a complete logger."""
    if logger is None:
        return CompleteLogger()
    if _is_complete(logger):
        return logger
    found = _methods(logger, _TEST)
    if found is None:
        raise TypeError("logger must provide error, errorf, fatal, fatalf, log and logf")
    log, logf = found["log"], found["logf"]
    return CompleteLogger(
        error=found["error"],
        errorf=found["errorf"],
        fatal=found["fatal"],
        fatalf=found["fatalf"],
        print=log,
        printf=logf,
        debug=log,
        debugf=logf,
        info=log,
        infof=logf,
        warn=log,
        warnf=logf,
    )