"""In-memory trust-on-first-use store for client certificates."""

from __future__ import annotations

import threading
import time
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization


def public_key_fingerprint(certificate: x509.Certificate) -> str:
    public_bytes = certificate.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    digest = hashes.Hash(hashes.SHA256())
    digest.update(public_bytes)
    return digest.finalize().hex()


class CertificateTrustStore:
    """Pins a public key to each certificate subject the first time it is seen."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pins: dict[str, dict[str, Any]] = {}

    def check(self, certificate: x509.Certificate) -> bool:
        """Return True when the certificate matches (or establishes) its subject's pin."""
        subject = certificate.subject.rfc4514_string()
        fingerprint = public_key_fingerprint(certificate)
        with self._lock:
            pin = self._pins.get(subject)
            if pin is None:
                self._pins[subject] = {
                    "subject": subject,
                    "fingerprint": fingerprint,
                    "pinned_at": int(time.time()),
                }
                return True
            return pin["fingerprint"] == fingerprint

    def get(self, subject: str) -> dict[str, Any] | None:
        with self._lock:
            pin = self._pins.get(subject)
            return dict(pin) if pin is not None else None

    def forget(self, subject: str) -> bool:
        with self._lock:
            return self._pins.pop(subject, None) is not None
