"""TLS listener: server context, socket binding and client handshakes."""

from __future__ import annotations

import logging
import socket
import time
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from OpenSSL import SSL, crypto

from config import ACCEPT_POLL_SECS, HOST, LISTEN_BACKLOG, PORT, SOCKET_TIMEOUT_SECS, TLS_SESSION_ID
from socket_handler import ClientAddress, Connection, SocketTimeoutError, retry_tls_call

logger = logging.getLogger(__name__)


class HandshakeError(Exception):
    """Raised when TLS negotiation with a client fails."""


def load_certificate(path: str | Path) -> x509.Certificate:
    return x509.load_pem_x509_certificate(Path(path).read_bytes())


def load_private_key(path: str | Path, password: bytes | None = None) -> PrivateKeyTypes:
    return serialization.load_pem_private_key(Path(path).read_bytes(), password=password)


def _accept_any_certificate(
    _connection: SSL.Connection,
    _certificate: crypto.X509,
    _error_number: int,
    _depth: int,
    _preverify_ok: int,
) -> bool:
    # Client certificates are requested but never rejected here; whether to
    # trust one is decided by the handler that receives it.
    return True


def build_server_context(certificate: x509.Certificate, private_key: PrivateKeyTypes) -> SSL.Context:
    """Build a TLS 1.2+ server context that asks for, but does not verify, client certificates."""
    context = SSL.Context(SSL.TLS_SERVER_METHOD)
    context.set_min_proto_version(SSL.TLS1_2_VERSION)
    context.use_certificate(certificate)
    try:
        context.use_privatekey(private_key)
        context.check_privatekey()
    except SSL.Error as exc:
        raise ValueError("Private key does not match certificate") from exc
    context.set_verify(SSL.VERIFY_PEER, _accept_any_certificate)
    context.set_session_id(TLS_SESSION_ID)
    return context


class TLSListener:
    def __init__(
        self,
        certificate: x509.Certificate,
        private_key: PrivateKeyTypes,
        *,
        backlog: int = LISTEN_BACKLOG,
        poll_secs: float = ACCEPT_POLL_SECS,
    ) -> None:
        self.certificate = certificate
        self.context = build_server_context(certificate, private_key)
        self.backlog = backlog
        self.poll_secs = poll_secs
        self.host = HOST
        self.port = 0
        self._server_socket: socket.socket | None = None

    @property
    def is_bound(self) -> bool:
        return self._server_socket is not None

    def start(self, host: str = HOST, port: int = PORT) -> None:
        """Bind and listen; port 0 picks a free port, readable from ``self.port``."""
        if self._server_socket is not None:
            raise RuntimeError("Listener is already started")
        server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_socket.bind((host, port))
            server_socket.listen(self.backlog)
            server_socket.settimeout(self.poll_secs)
        except OSError:
            server_socket.close()
            raise
        self._server_socket = server_socket
        self.host = host
        self.port = server_socket.getsockname()[1]
        logger.info("Listening on %s:%s", self.host, self.port)

    def accept_client(self) -> tuple[socket.socket, ClientAddress] | None:
        """Wait one poll interval for a TCP client; ``None`` when nobody connected."""
        if self._server_socket is None:
            raise RuntimeError("Listener is not started")
        try:
            client_socket, address = self._server_socket.accept()
        except socket.timeout:
            return None
        return client_socket, address

    def secure(
        self,
        client_socket: socket.socket,
        address: ClientAddress,
        *,
        timeout_secs: float | None = SOCKET_TIMEOUT_SECS,
    ) -> Connection:
        """Run the server side of the TLS handshake on an accepted socket."""
        client_socket.setblocking(False)
        tls_connection = SSL.Connection(self.context, client_socket)
        tls_connection.set_accept_state()
        deadline = None if timeout_secs is None else time.monotonic() + timeout_secs
        try:
            retry_tls_call(tls_connection, tls_connection.do_handshake, deadline)
        except (SSL.Error, OSError, SocketTimeoutError) as exc:
            client_socket.close()
            raise HandshakeError(f"TLS handshake with {address[0]} failed: {exc}") from exc
        return Connection(tls_connection, client_socket, address, timeout_secs=timeout_secs)

    def accept(self, *, timeout_secs: float | None = SOCKET_TIMEOUT_SECS) -> Connection:
        """Block until a client connects and completes the handshake."""
        while True:
            accepted = self.accept_client()
            if accepted is not None:
                client_socket, address = accepted
                return self.secure(client_socket, address, timeout_secs=timeout_secs)

    def close(self) -> None:
        if self._server_socket is not None:
            self._server_socket.close()
            self._server_socket = None
