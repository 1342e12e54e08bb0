"""Example route handlers for the demo capsule."""

from __future__ import annotations

from typing import TYPE_CHECKING

from cryptography.x509 import Certificate

from cert_store import CertificateTrustStore
from handlers.pages import require_input, static_page
from response import CLIENT_CERTIFICATE_REQUIRED, SUCCESS, format_status_line

if TYPE_CHECKING:
    from socket_handler import Connection

HOME_CONTENT = """# Hello from the Gemini server

This is the start page.
Take a look at /cert to test client certificates, or at /input and
/inputpw to test the input prompts.

=> /cert
=> /input
=> /inputpw
=> /redirect
=> /plain
"""

home = static_page(SUCCESS, "text/gemini; lang=en", HOME_CONTENT)
plain = static_page(SUCCESS, "text/plain", "Hello World!")

trust_store = CertificateTrustStore()


def echo_input(connection: Connection, _certificate: Certificate | None, query: str) -> None:
    connection.write(format_status_line(SUCCESS, "text/gemini"))
    connection.write("# Input test\n")
    connection.write(f"Your input is {query}\n")


input_page = require_input(echo_input, "Some input")
secret_input_page = require_input(echo_input, "Some secret input", sensitive=True)


def certificate_page(connection: Connection, certificate: Certificate | None, _query: str) -> None:
    if certificate is None:
        connection.write(format_status_line(CLIENT_CERTIFICATE_REQUIRED, "Require certificate"))
        return

    subject = certificate.subject.rfc4514_string()
    connection.write(format_status_line(SUCCESS, "text/gemini"))
    connection.write("# Certificate test\n")
    if certificate.subject == certificate.issuer:
        connection.write("Certificate subject and issuer are equal.\n")
    connection.write(f"Serial number: {certificate.serial_number}\n")
    connection.write("## Subject\n")
    for attribute in certificate.subject:
        connection.write(f"* {attribute.rfc4514_attribute_name} : {attribute.value}\n")
    connection.write("## Issuer\n")
    for attribute in certificate.issuer:
        connection.write(f"* {attribute.rfc4514_attribute_name} : {attribute.value}\n")

    if trust_store.check(certificate):
        connection.write(f"You are authenticated as {subject}\n")
    else:
        connection.write(f"You are not authenticated as {subject}\n")
