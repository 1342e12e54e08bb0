"""Tests for the TLS listener and the client-certificate acceptance policy."""

from __future__ import annotations

import socket
import ssl
import threading
import warnings
from pathlib import Path

import pytest

from gemini_client import client_context
from socket_handler import read_request_line
from tls import HandshakeError, TLSListener, build_server_context, load_certificate, load_private_key


def _start_listener(server_identity) -> TLSListener:
    certificate, private_key = server_identity
    listener = TLSListener(certificate, private_key)
    listener.start("127.0.0.1", 0)
    return listener


def _client_exchange(
    port: int,
    payload: bytes,
    context: ssl.SSLContext,
    result: dict[str, object],
) -> None:
    try:
        with socket.create_connection(("127.0.0.1", port), timeout=3) as raw_sock:
            with context.wrap_socket(raw_sock, server_hostname="localhost") as tls_sock:
                result["version"] = tls_sock.version()
                tls_sock.sendall(payload)
                buffer = bytearray()
                while True:
                    chunk = tls_sock.recv(4096)
                    if not chunk:
                        break
                    buffer.extend(chunk)
                result["response"] = bytes(buffer)
    except (OSError, ssl.SSLError) as exc:
        result["error"] = exc


def test_listener_binds_free_port(server_identity) -> None:
    listener = _start_listener(server_identity)
    try:
        assert listener.is_bound
        assert listener.port != 0
    finally:
        listener.close()

    assert not listener.is_bound


def test_accept_without_client_certificate(server_identity) -> None:
    listener = _start_listener(server_identity)
    result: dict[str, object] = {}
    client = threading.Thread(
        target=_client_exchange,
        args=(listener.port, b"gemini://localhost/\r\n", client_context(), result),
    )
    client.start()
    try:
        with listener.accept() as connection:
            assert connection.peer_certificate is None
            assert read_request_line(connection) == b"gemini://localhost/\r\n"
            connection.write("20 text/plain\r\nok")
        client.join(timeout=3)
    finally:
        listener.close()

    assert result.get("response") == b"20 text/plain\r\nok"
    assert result["version"] in {"TLSv1.2", "TLSv1.3"}


def test_untrusted_client_certificate_is_accepted(server_identity, client_identity) -> None:
    certificate, cert_file, key_file = client_identity
    listener = _start_listener(server_identity)
    result: dict[str, object] = {}
    client = threading.Thread(
        target=_client_exchange,
        args=(listener.port, b"gemini://localhost/cert\r\n", client_context(cert_file, key_file), result),
    )
    client.start()
    try:
        with listener.accept() as connection:
            peer = connection.peer_certificate
            read_request_line(connection)
            connection.write(b"20 text/plain\r\n")
        client.join(timeout=3)
    finally:
        listener.close()

    assert peer is not None
    assert peer == certificate
    assert "error" not in result


def test_tls_below_1_2_is_refused(server_identity) -> None:
    listener = _start_listener(server_identity)
    context = client_context()
    context.minimum_version = ssl.TLSVersion.TLSv1
    context.maximum_version = ssl.TLSVersion.TLSv1_1
    result: dict[str, object] = {}
    client = threading.Thread(
        target=_client_exchange,
        args=(listener.port, b"gemini://localhost/\r\n", context, result),
    )
    client.start()
    try:
        with pytest.raises(HandshakeError):
            listener.accept(timeout_secs=3)
        client.join(timeout=3)
    finally:
        listener.close()

    assert "error" in result


def test_plaintext_client_fails_handshake(server_identity) -> None:
    listener = _start_listener(server_identity)
    try:
        with socket.create_connection(("127.0.0.1", listener.port), timeout=3) as raw_sock:
            raw_sock.sendall(b"gemini://localhost/\r\n")
            with pytest.raises(HandshakeError):
                listener.accept(timeout_secs=3)
    finally:
        listener.close()


def test_silent_client_times_out_during_handshake(server_identity) -> None:
    listener = _start_listener(server_identity)
    try:
        with socket.create_connection(("127.0.0.1", listener.port), timeout=3):
            with pytest.raises(HandshakeError, match="Timed out"):
                listener.accept(timeout_secs=0.2)
    finally:
        listener.close()


def test_mismatched_private_key_is_rejected(server_identity, identity_factory) -> None:
    certificate, _key = server_identity
    _other_certificate, other_key = identity_factory("other")

    with pytest.raises(ValueError, match="does not match"):
        build_server_context(certificate, other_key)


def test_pem_loaders_round_trip_identity(client_identity) -> None:
    certificate, cert_file, key_file = client_identity

    loaded = load_certificate(cert_file)
    key = load_private_key(Path(key_file))

    assert loaded == certificate
    assert key.public_key().public_numbers() == certificate.public_key().public_numbers()


def test_server_context_builds_without_deprecation_warnings(server_identity) -> None:
    certificate, private_key = server_identity

    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        build_server_context(certificate, private_key)
