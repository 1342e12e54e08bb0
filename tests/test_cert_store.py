"""Unit tests for the trust-on-first-use certificate store."""

from __future__ import annotations

from cert_store import CertificateTrustStore, public_key_fingerprint


def test_first_certificate_for_subject_is_pinned(identity_factory) -> None:
    store = CertificateTrustStore()
    certificate, _key = identity_factory("alice")

    assert store.check(certificate) is True
    pin = store.get("CN=alice")
    assert pin is not None
    assert pin["fingerprint"] == public_key_fingerprint(certificate)


def test_same_key_is_accepted_again(identity_factory) -> None:
    store = CertificateTrustStore()
    certificate, _key = identity_factory("alice")

    store.check(certificate)

    assert store.check(certificate) is True


def test_new_key_for_pinned_subject_is_rejected(identity_factory) -> None:
    store = CertificateTrustStore()
    original, _ = identity_factory("alice")
    impostor, _ = identity_factory("alice")

    store.check(original)

    assert store.check(impostor) is False


def test_forget_allows_repinning(identity_factory) -> None:
    store = CertificateTrustStore()
    original, _ = identity_factory("alice")
    replacement, _ = identity_factory("alice")
    store.check(original)

    assert store.forget("CN=alice") is True
    assert store.forget("CN=alice") is False
    assert store.check(replacement) is True
