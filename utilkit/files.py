"""Cancellable local and SSH file copies, and signal handlers."""

from __future__ import annotations

import os
import posixpath
import signal
import stat as _stat
from contextlib import contextmanager
from typing import IO, Any, Callable, Iterator, Protocol

from utilkit.timing import Context

DEFAULT_DIR_MODE = 0o755
_CHUNK_SIZE = 32 * 1024

CopyFileFunc = Callable[[Context, str, os.stat_result, IO[bytes]], Any]
SignalHandler = Callable[[Any], None]


class FileCopyError(Exception):
    """Copying or moving a file failed."""


class SSHSession(Protocol):
    """What an SSH copy needs from a remote session."""

    def run(self, cmd: str) -> Any: ...

    def start(self, cmd: str) -> Any: ...

    def stdin_pipe(self) -> Any: ...

    def wait(self) -> Any: ...


def _check(ctx: Context) -> None:
    err = ctx.err()
    if err is not None:
        raise err


def _copy_stream(ctx: Context, dst: Any, src: Any) -> int:
    """Copy src into dst chunk by chunk, stopping when ctx ends."""
    total = 0
    while True:
        _check(ctx)
        chunk = src.read(_CHUNK_SIZE)
        if not chunk:
            return total
        dst.write(chunk)
        total += len(chunk)


def move_file(ctx: Context, dst: str, src: str, fn: CopyFileFunc) -> None:
    """Copy src to dst with fn, then remove src."""
    try:
        copy_file(ctx, dst, src, fn)
    except Exception as err:
        raise FileCopyError(f"copying file {src} to {dst} failed: {err}") from err
    try:
        if os.path.isdir(src) and not os.path.islink(src):
            os.rmdir(src)
        else:
            os.remove(src)
    except OSError as err:
        raise FileCopyError(f"removing {src} failed: {err}") from err


def copy_file(ctx: Context, dst: str, src: str, fn: CopyFileFunc) -> None:
    """Copy a file, or every file below a directory, to dst using fn."""
    _check(ctx)
    try:
        src_stat = os.stat(src)
    except OSError as err:
        raise FileCopyError(f"stating {src} failed: {err}") from err

    if _stat.S_ISDIR(src_stat.st_mode):
        src = os.path.normpath(src)
        try:
            names = sorted(os.listdir(src))
        except OSError as err:
            raise FileCopyError(f"walking through {src} failed: {err}") from err
        for name in names:
            path = os.path.join(src, name)
            target = os.path.join(dst, name)
            try:
                copy_file(ctx, target, path, fn)
            except Exception as err:
                raise FileCopyError(
                    f"walking through {src} failed: copying {path} to {target} failed: {err}"
                ) from err
        return

    try:
        src_file = open(src, "rb")
    except OSError as err:
        raise FileCopyError(f"opening {src} failed: {err}") from err
    with src_file:
        try:
            fn(ctx, dst, src_stat, src_file)
        except Exception as err:
            raise FileCopyError(f"custom failed: {err}") from err


def local_copy_file_func(
    ctx: Context, dst: str, src_stat: os.stat_result, src_file: IO[bytes]
) -> None:
    """Write src_file to the local path dst, keeping the source permissions."""
    _check(ctx)

    parent = os.path.dirname(dst)
    if parent:
        try:
            os.makedirs(parent, DEFAULT_DIR_MODE, exist_ok=True)
        except OSError as err:
            raise FileCopyError(f"mkdirall {parent} failed: {err}") from err

    try:
        dst_file = open(dst, "wb")
    except OSError as err:
        raise FileCopyError(f"creating {dst} failed: {err}") from err

    with dst_file:
        mode = _stat.S_IMODE(src_stat.st_mode)
        try:
            os.chmod(dst, mode)
        except OSError as err:
            raise FileCopyError(f"chmod {dst} {mode:o} failed: {err}") from err
        try:
            _copy_stream(ctx, dst_file, src_file)
        except Exception as err:
            name = getattr(src_file, "name", "source")
            raise FileCopyError(f"copying content of {name} to {dst} failed: {err}") from err


_TERM_SIGNALS = frozenset(
    sig
    for sig in (
        getattr(signal, name, None)
        for name in ("SIGABRT", "SIGKILL", "SIGINT", "SIGQUIT", "SIGTERM")
    )
    if sig is not None
)


def is_term_signal(sig: Any) -> bool:
    """Tell whether sig asks the process to end."""
    return sig in _TERM_SIGNALS


def term_signal_handler(fn: Callable[[], Any]) -> SignalHandler:
    """Return a handler calling fn only for terminating signals."""

    def handler(sig: Any) -> None:
        if is_term_signal(sig):
            fn()

    return handler


def _signal_name(sig: Any) -> str:
    try:
        return signal.Signals(sig).name
    except (ValueError, TypeError):
        return str(sig)


def logger_signal_handler(logger: Any, *args: Any) -> SignalHandler:
    """Return a handler logging every signal except the ignored ones in args."""
    ignored = set(args)

    def handler(sig: Any) -> None:
        if sig in ignored:
            return
        logger.debugf("received signal %s", _signal_name(sig))

    return handler


def _remote_dir(path: str) -> str:
    return posixpath.normpath(posixpath.dirname(path) or ".")


def _step(message: str, fn: Callable[..., Any], *args: Any) -> Any:
    try:
        return fn(*args)
    except Exception as err:
        raise FileCopyError(f"{message}: {err}") from err


@contextmanager
def _session(factory: Callable[[], SSHSession]) -> Iterator[SSHSession]:
    session = _step("creating ssh session failed", factory)
    try:
        yield session
    finally:
        close = getattr(session, "close", None)
        if callable(close):
            close()


def ssh_copy_file_func(session_factory: Callable[[], SSHSession]) -> CopyFileFunc:
    """Return a copy func sending files over SSH with scp.

    session_factory is called for each remote command and returns a fresh
    session; a session with a close() method is closed once used.
    """

    def copy(ctx: Context, dst: str, src_stat: os.stat_result, src_file: IO[bytes]) -> None:
        _check(ctx)
        remote_dir = _remote_dir(dst)
        escaped = remote_dir.replace(" ", "\\ ")

        with _session(session_factory) as session:
            _step(f"creating {remote_dir} failed", session.run, "mkdir -p " + escaped)

        with _session(session_factory) as session:
            stdin = _step("creating stdin pipe failed", session.stdin_pipe)
            closed = False
            try:
                _step(f"scp to {dst} failed", session.start, "scp -qt " + escaped)
                perm = _stat.S_IMODE(src_stat.st_mode) & 0o777
                header = f"C{perm:04o} {src_stat.st_size} {posixpath.basename(dst)}\n"
                _step("sending metadata failed", stdin.write, header.encode())
                _step("copying failed", _copy_stream, ctx, stdin, src_file)
                _step("sending close failed", stdin.write, b"\x00")
                closed = True
                _step("closing failed", stdin.close)
                _step("waiting failed", session.wait)
            finally:
                if not closed:
                    try:
                        stdin.close()
                    except Exception:
                        pass

    return copy