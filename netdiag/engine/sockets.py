from __future__ import annotations

"""Deadline-bounded connection primitive used by every socket-based probe.

`race()` is the only place where a unit of work competes with a timer: the
work and the timer run as two tasks, the first one to finish decides the
outcome and the other is cancelled. `ConnectionAttempt` builds on it to own a
single stream pair whose connect, writes and reads all share one deadline and
whose writer is closed exactly once, whatever happens first.
"""

import asyncio
import socket
import ssl
import time
from typing import Any, Awaitable, Callable, Optional, Tuple

from .envelope import DeadlineExceeded, NetworkError

Streams = Tuple[asyncio.StreamReader, asyncio.StreamWriter]
Opener = Callable[[], Awaitable[Streams]]


class Deadline:
    """Monotonic time budget shared by all steps of one probe."""

    def __init__(self, seconds: float):
        self.seconds = float(seconds)
        self.started = time.monotonic()
        self.expires = self.started + self.seconds

    def remaining(self) -> float:
        return max(0.0, self.expires - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


def _discard_late(task: "asyncio.Future[Any]", on_discard: Optional[Callable[[Any], Any]]) -> None:
    if on_discard is None:
        return

    def _cleanup(done: "asyncio.Future[Any]") -> None:
        if done.cancelled() or done.exception() is not None:
            return
        on_discard(done.result())

    task.add_done_callback(_cleanup)


async def race(
    work: Awaitable[Any],
    timeout: Optional[float],
    on_discard: Optional[Callable[[Any], Any]] = None,
    what: str = "deadline exceeded",
) -> Any:
    """Await `work` against a deadline timer; the first to finish wins.

    Returns the work's value or re-raises its exception. If the timer wins the
    work is cancelled and `DeadlineExceeded(what)` is raised; should the work
    still produce a value after losing, it is passed to `on_discard`.
    """
    task = asyncio.ensure_future(work)
    if timeout is None:
        return await task
    if timeout <= 0:
        task.cancel()
        _discard_late(task, on_discard)
        raise DeadlineExceeded(what)

    timer = asyncio.ensure_future(asyncio.sleep(timeout))
    try:
        done, _ = await asyncio.wait({task, timer}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        _discard_late(task, on_discard)
        raise
    finally:
        timer.cancel()

    if task in done:
        return task.result()

    task.cancel()
    _discard_late(task, on_discard)
    raise DeadlineExceeded(what)


async def open_stream(
    host: str,
    port: int,
    ssl_context: Optional[ssl.SSLContext] = None,
    server_hostname: Optional[str] = None,
) -> Streams:
    if ssl_context is None:
        return await asyncio.open_connection(host, port)
    return await asyncio.open_connection(
        host,
        port,
        ssl=ssl_context,
        server_hostname=server_hostname or host,
    )


def describe_os_error(exc: BaseException) -> str:
    if isinstance(exc, socket.gaierror):
        return f"DNS lookup failed: {exc.strerror or exc}"
    if isinstance(exc, ConnectionRefusedError):
        return "connection refused"
    if isinstance(exc, ConnectionResetError):
        return "connection reset by peer"
    if isinstance(exc, ssl.SSLError):
        reason = getattr(exc, "reason", None) or getattr(exc, "verify_message", None)
        return f"TLS handshake failed: {reason or exc}"
    message = str(exc).strip()
    return f"{exc.__class__.__name__}: {message}" if message else exc.__class__.__name__


class ConnectionAttempt:
    """One connection, one deadline, closed exactly once.

    Usage:
        async with ConnectionAttempt(host, port, timeout=2.0) as conn:
            await conn.send(b"...")
            data = await conn.read_first(4096)
    """

    def __init__(
        self,
        host: str,
        port: int,
        timeout: float,
        ssl_context: Optional[ssl.SSLContext] = None,
        server_hostname: Optional[str] = None,
        opener: Optional[Opener] = None,
    ):
        self.host = host
        self.port = int(port)
        self.deadline = Deadline(timeout)
        self.ssl_context = ssl_context
        self.server_hostname = server_hostname
        self._opener = opener
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.connect_ms: Optional[int] = None

    async def __aenter__(self) -> "ConnectionAttempt":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _make_opener(self) -> Awaitable[Streams]:
        if self._opener is not None:
            return self._opener()
        return open_stream(self.host, self.port, self.ssl_context, self.server_hostname)

    async def open(self) -> "ConnectionAttempt":
        started = time.monotonic()
        try:
            self.reader, self.writer = await race(
                self._make_opener(),
                self.deadline.remaining(),
                on_discard=_close_streams,
                what="connection timed out",
            )
        except (OSError, ssl.SSLError) as exc:
            raise NetworkError(describe_os_error(exc)) from exc
        self.connect_ms = int((time.monotonic() - started) * 1000)
        return self

    async def send(self, data: bytes) -> None:
        if self.writer is None:
            raise NetworkError("connection is not open")
        try:
            self.writer.write(data)
            await race(self.writer.drain(), self.deadline.remaining(), what="write timed out")
        except (OSError, ssl.SSLError) as exc:
            raise NetworkError(describe_os_error(exc)) from exc

    async def read_first(self, limit: int = 4096) -> bytes:
        """Return the bytes of the first data event (empty on immediate EOF)."""
        if self.reader is None:
            raise NetworkError("connection is not open")
        try:
            return await race(self.reader.read(limit), self.deadline.remaining(), what="read timed out")
        except (OSError, ssl.SSLError) as exc:
            raise NetworkError(describe_os_error(exc)) from exc

    async def read_until_eof(self, limit: int) -> Tuple[bytes, bool]:
        """Accumulate until the peer closes or `limit` bytes arrive.

        Returns `(data, truncated)`; reading stops as soon as the cap is hit.
        """
        if self.reader is None:
            raise NetworkError("connection is not open")
        chunks = bytearray()
        try:
            while len(chunks) <= limit:
                chunk = await race(self.reader.read(4096), self.deadline.remaining(), what="read timed out")
                if not chunk:
                    return bytes(chunks), False
                chunks.extend(chunk)
        except (OSError, ssl.SSLError) as exc:
            raise NetworkError(describe_os_error(exc)) from exc
        return bytes(chunks[:limit]), True

    def extra_info(self, name: str) -> Any:
        if self.writer is None:
            return None
        return self.writer.get_extra_info(name)

    async def close(self) -> None:
        writer, self.writer = self.writer, None
        if writer is None:
            return
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=1.0)
        except Exception:
            pass


def _close_streams(streams: Streams) -> None:
    _, writer = streams
    if writer is not None:
        writer.close()
