"""Shared fixtures: throwaway TLS identities and an in-memory connection."""

from __future__ import annotations

import datetime
from collections.abc import Callable
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


def make_identity(common_name: str) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName("localhost")]), critical=False)
        .sign(key, hashes.SHA256())
    )
    return certificate, key


def write_identity(
    directory: Path,
    certificate: x509.Certificate,
    key: ec.EllipticCurvePrivateKey,
) -> tuple[Path, Path]:
    cert_file = directory / "cert.pem"
    key_file = directory / "key.pem"
    cert_file.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_file.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return cert_file, key_file


@pytest.fixture(scope="session")
def server_identity() -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    return make_identity("localhost")


@pytest.fixture(scope="session")
def client_identity(tmp_path_factory: pytest.TempPathFactory) -> tuple[x509.Certificate, Path, Path]:
    """Self-signed client certificate nobody trusts, plus its PEM files."""
    certificate, key = make_identity("gemini-client")
    cert_file, key_file = write_identity(tmp_path_factory.mktemp("client"), certificate, key)
    return certificate, cert_file, key_file


class RecordingConnection:
    """Stands in for a TLS connection when calling handlers directly."""

    def __init__(self, peer_certificate: x509.Certificate | None = None) -> None:
        self.peer_certificate = peer_certificate
        self.address = ("127.0.0.1", 0)
        self.buffer = bytearray()

    @property
    def bytes_written(self) -> int:
        return len(self.buffer)

    def write(self, data: bytes | str) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.buffer.extend(data)
        return len(data)

    @property
    def output(self) -> bytes:
        return bytes(self.buffer)


@pytest.fixture()
def make_connection() -> Callable[..., RecordingConnection]:
    return RecordingConnection


@pytest.fixture()
def identity_factory() -> Callable[[str], tuple[x509.Certificate, ec.EllipticCurvePrivateKey]]:
    return make_identity
