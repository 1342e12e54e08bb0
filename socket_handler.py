"""Low-level TLS connection read/write utilities."""

from __future__ import annotations

import logging
import selectors
import socket
import time
from collections.abc import Callable
from typing import TypeVar

from cryptography.x509 import Certificate
from OpenSSL import SSL

from config import MAX_REQUEST_LINE_BYTES, READ_CHUNK_SIZE, SOCKET_TIMEOUT_SECS, WRITE_CHUNK_SIZE
from request import MalformedRequestError, RequestTooLongError
from response import status_of

logger = logging.getLogger(__name__)

T = TypeVar("T")
ClientAddress = tuple[str, int]


class GeminiReadError(Exception):
    """Raised when a client request cannot be safely read from the connection."""


class SocketTimeoutError(GeminiReadError):
    """Raised when the peer does not make progress before the socket deadline."""


class ConnectionClosedError(GeminiReadError):
    """Raised when the client closes the connection without sending a request."""


def retry_tls_call(tls_connection: SSL.Connection, call: Callable[[], T], deadline: float | None) -> T:
    """Run a pyOpenSSL call on a non-blocking socket until it stops wanting I/O."""
    while True:
        try:
            return call()
        except SSL.WantReadError:
            _wait_for_socket(tls_connection, selectors.EVENT_READ, deadline)
        except SSL.WantWriteError:
            _wait_for_socket(tls_connection, selectors.EVENT_WRITE, deadline)


def _wait_for_socket(tls_connection: SSL.Connection, events: int, deadline: float | None) -> None:
    remaining = None
    if deadline is not None:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise SocketTimeoutError("Timed out waiting for socket I/O")

    with selectors.DefaultSelector() as selector:
        selector.register(tls_connection.fileno(), events)
        if not selector.select(timeout=remaining):
            raise SocketTimeoutError("Timed out waiting for socket I/O")


def _is_unexpected_eof(exc: SSL.Error) -> bool:
    # Abrupt close without close_notify: SysCallError(-1, ...) or, with
    # OpenSSL 3, an "unexpected eof while reading" library error.
    if isinstance(exc, SSL.SysCallError):
        return bool(exc.args) and exc.args[0] == -1
    return "unexpected eof" in str(exc).lower()


def _load_peer_certificate(tls_connection: SSL.Connection) -> Certificate | None:
    return tls_connection.get_peer_certificate(as_cryptography=True)


class Connection:
    """One client TLS session: buffered outbound sink plus the peer certificate.

    Handlers write the status line and body through ``write``; the worker owns
    the connection and closes it with ``close`` (or the context manager), which
    flushes pending output, sends the TLS close_notify and releases the socket.
    """

    def __init__(
        self,
        tls_connection: SSL.Connection,
        raw_socket: socket.socket,
        address: ClientAddress,
        *,
        timeout_secs: float | None = SOCKET_TIMEOUT_SECS,
        write_chunk_size: int = WRITE_CHUNK_SIZE,
    ) -> None:
        self._tls = tls_connection
        self._socket = raw_socket
        self.address = address
        self.timeout_secs = timeout_secs
        self._write_chunk_size = write_chunk_size
        self._buffer = bytearray()
        self._peer_certificate = _load_peer_certificate(tls_connection)
        self.bytes_sent = 0
        self.status: int | None = None
        self.closed = False

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()

    @property
    def peer_certificate(self) -> Certificate | None:
        return self._peer_certificate

    @property
    def bytes_written(self) -> int:
        """Bytes accepted by ``write`` so far, sent or still buffered."""
        return self.bytes_sent + len(self._buffer)

    def deadline(self) -> float | None:
        """Absolute monotonic deadline one socket timeout from now."""
        if self.timeout_secs is None:
            return None
        return time.monotonic() + self.timeout_secs

    def recv(self, size: int, deadline: float | None = None) -> bytes:
        """Read up to ``size`` bytes; an empty result means the peer closed.

        Without an explicit ``deadline`` the call gets one socket timeout.
        """
        if deadline is None:
            deadline = self.deadline()
        try:
            return retry_tls_call(self._tls, lambda: self._tls.recv(size), deadline)
        except SSL.ZeroReturnError:
            return b""
        except SSL.Error as exc:
            if _is_unexpected_eof(exc):
                return b""
            raise

    def write(self, data: bytes | str) -> int:
        if self.closed:
            raise ValueError("write to closed connection")
        if isinstance(data, str):
            data = data.encode("utf-8")
        if self.bytes_written == 0:
            self.status = status_of(data)
        self._buffer.extend(data)
        if len(self._buffer) >= self._write_chunk_size:
            self.flush()
        return len(data)

    def flush(self, deadline: float | None = None) -> None:
        if not self._buffer:
            return
        if deadline is None:
            deadline = self.deadline()
        payload = bytes(self._buffer)
        self._buffer.clear()
        view = memoryview(payload)
        offset = 0
        while offset < len(view):
            # The same object must be passed again when OpenSSL asks for a retry.
            chunk = bytes(view[offset : offset + self._write_chunk_size])
            sent = retry_tls_call(self._tls, lambda: self._tls.send(chunk), deadline)
            offset += sent
            self.bytes_sent += sent

    def close(self) -> None:
        if self.closed:
            return
        deadline = self.deadline()
        try:
            self.flush(deadline)
            retry_tls_call(self._tls, self._tls.shutdown, deadline)
        except (SSL.Error, OSError, GeminiReadError) as exc:
            logger.debug("Unclean TLS close for %s: %s", self.address[0], exc)
        finally:
            self.closed = True
            self._buffer.clear()
            self._socket.close()


def read_request_line(connection: Connection, max_bytes: int = MAX_REQUEST_LINE_BYTES) -> bytes:
    """Read one request line, terminator included.

    The whole line shares a single socket timeout, so a client trickling bytes
    cannot hold the worker longer than an idle one.
    """
    deadline = connection.deadline()
    buffer = bytearray()
    while True:
        newline_index = buffer.find(b"\n")
        if newline_index != -1:
            return bytes(buffer[: newline_index + 1])
        if len(buffer) > max_bytes + 2:
            raise RequestTooLongError("Request line exceeded MAX_REQUEST_LINE_BYTES")

        chunk = connection.recv(READ_CHUNK_SIZE, deadline)
        if not chunk:
            if not buffer:
                raise ConnectionClosedError("Connection closed before a request was sent")
            raise MalformedRequestError("Connection closed before request line completed")
        buffer.extend(chunk)
