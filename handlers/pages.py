"""Reusable handler factories: static pages, input prompts and redirects."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cryptography.x509 import Certificate

from response import (
    INPUT,
    REDIRECT_PERMANENT,
    REDIRECT_TEMPORARY,
    SENSITIVE_INPUT,
    GeminiResponse,
)

if TYPE_CHECKING:
    from router import Handler
    from socket_handler import Connection


@dataclass(frozen=True)
class StaticPage:
    """Writes the same pre-encoded response on every request."""

    status: int
    meta: str
    content: bytes | str | None = None
    payload: bytes = field(init=False, repr=False)

    def __post_init__(self) -> None:
        response = GeminiResponse(status=self.status, meta=self.meta, body=self.content)
        object.__setattr__(self, "payload", response.to_bytes())

    def __call__(self, connection: Connection, _certificate: Certificate | None, _query: str) -> None:
        connection.write(self.payload)


@dataclass(frozen=True)
class RequireInput:
    """Prompts for input while the query is empty, then delegates to ``inner``."""

    inner: Handler
    prompt: str
    sensitive: bool = False
    prompt_line: bytes = field(init=False, repr=False)

    def __post_init__(self) -> None:
        status = SENSITIVE_INPUT if self.sensitive else INPUT
        object.__setattr__(self, "prompt_line", GeminiResponse(status, self.prompt).status_line())

    def __call__(self, connection: Connection, certificate: Certificate | None, query: str) -> None:
        if query == "":
            connection.write(self.prompt_line)
            return
        self.inner(connection, certificate, query)


def static_page(status: int, meta: str, content: bytes | str | None = None) -> StaticPage:
    """Page without dynamic content, e.g. ``static_page(20, "text/gemini", "# Hello")``."""
    return StaticPage(status=status, meta=meta, content=content)


def require_input(inner: Handler, prompt: str, sensitive: bool = False) -> RequireInput:
    """Ask the client for input (status 10, or 11 for secrets) before calling ``inner``."""
    return RequireInput(inner=inner, prompt=prompt, sensitive=sensitive)


def redirect_temporary(location: str) -> StaticPage:
    return StaticPage(status=REDIRECT_TEMPORARY, meta=location)


def redirect_permanent(location: str) -> StaticPage:
    return StaticPage(status=REDIRECT_PERMANENT, meta=location)
