"""Gemini response model and status-line encoder."""

from dataclasses import dataclass

from config import MAX_META_BYTES

INPUT = 10
SENSITIVE_INPUT = 11
SUCCESS = 20
REDIRECT_TEMPORARY = 30
REDIRECT_PERMANENT = 31
TEMPORARY_FAILURE = 40
SERVER_UNAVAILABLE = 41
NOT_FOUND = 51
BAD_REQUEST = 59
CLIENT_CERTIFICATE_REQUIRED = 60
CERTIFICATE_NOT_AUTHORIZED = 61
CERTIFICATE_NOT_VALID = 62


def format_status_line(status: int, meta: str = "") -> bytes:
    """Encode ``<status> <meta>\\r\\n`` after validating both parts."""
    if not 10 <= status <= 69:
        raise ValueError(f"status must be a two-digit code, got {status!r}")
    if "\r" in meta or "\n" in meta:
        raise ValueError("meta cannot contain line terminators")
    encoded_meta = meta.encode("utf-8")
    if len(encoded_meta) > MAX_META_BYTES:
        raise ValueError("meta exceeded MAX_META_BYTES")
    return f"{status:02d} ".encode("ascii") + encoded_meta + b"\r\n"


def status_of(payload: bytes) -> int | None:
    """Return the status code a serialized response starts with, if any."""
    head = payload[:3]
    if len(head) < 2 or not head[:2].isdigit():
        return None
    return int(head[:2])


@dataclass(slots=True)
class GeminiResponse:
    status: int
    meta: str = ""
    body: bytes | str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")

    def status_line(self) -> bytes:
        return format_status_line(self.status, self.meta)

    def to_bytes(self) -> bytes:
        """Serialize the response into Gemini wire format bytes."""
        payload = bytearray(self.status_line())
        if self.body:
            payload.extend(self.body)
        return bytes(payload)
