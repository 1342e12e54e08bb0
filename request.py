"""Gemini request model and request-line parser."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import unquote_plus, urlsplit

from config import GEMINI_SCHEME, MAX_REQUEST_LINE_BYTES
from response import BAD_REQUEST


class GeminiRequestError(ValueError):
    """Request error carrying the Gemini status the worker answers with."""

    def __init__(self, message: str, *, status_code: int = BAD_REQUEST) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedRequestError(GeminiRequestError):
    """Raised when a request line is not an absolute URL."""


class RequestTooLongError(GeminiRequestError):
    """Raised when a request line exceeds MAX_REQUEST_LINE_BYTES."""


class UnsupportedSchemeError(GeminiRequestError):
    """Raised when a well-formed request names a scheme other than gemini."""

    def __init__(self, scheme: str) -> None:
        super().__init__(f"Unknown scheme: {scheme[:64]}")
        self.scheme = scheme


@dataclass(frozen=True, slots=True)
class GeminiRequest:
    url: str
    scheme: str
    host: str
    path: str
    query: str = ""
    port: int | None = None

    @classmethod
    def from_line(cls, raw: bytes) -> "GeminiRequest":
        """Parse one request line (with or without its CRLF) into a request."""
        if raw.endswith(b"\r\n"):
            raw = raw[:-2]
        elif raw.endswith(b"\n"):
            raw = raw[:-1]

        if len(raw) > MAX_REQUEST_LINE_BYTES:
            raise RequestTooLongError("Request line exceeded MAX_REQUEST_LINE_BYTES")
        if not raw:
            raise MalformedRequestError("Empty request line")

        try:
            url = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedRequestError("Request line is not valid UTF-8") from exc

        if any(char.isspace() or ord(char) < 0x20 or ord(char) == 0x7F for char in url):
            raise MalformedRequestError("Request line contains whitespace or control bytes")

        try:
            parsed = urlsplit(url)
            port = parsed.port
        except ValueError as exc:
            raise MalformedRequestError(f"Invalid URL: {exc}") from exc

        if not parsed.scheme:
            raise MalformedRequestError("Request URL must be absolute")
        if not url[len(parsed.scheme) + 1 :].startswith("//"):
            raise MalformedRequestError("Request URL is missing an authority")

        return cls(
            url=url,
            scheme=parsed.scheme,
            host=parsed.hostname or "",
            port=port,
            path=parsed.path,
            query=unquote_plus(parsed.query),
        )

    @property
    def has_supported_scheme(self) -> bool:
        return self.scheme == GEMINI_SCHEME

    def ensure_supported_scheme(self) -> None:
        if not self.has_supported_scheme:
            raise UnsupportedSchemeError(self.scheme)
