"""Configuration constants for the Gemini server."""

HOST: str = "localhost"
PORT: int = 1965
GEMINI_SCHEME: str = "gemini"
LISTEN_BACKLOG: int = 128
ACCEPT_POLL_SECS: float = 0.2
SOCKET_TIMEOUT_SECS: float = 10.0
READ_CHUNK_SIZE: int = 1026
WRITE_CHUNK_SIZE: int = 16_384
MAX_REQUEST_LINE_BYTES: int = 1024
MAX_META_BYTES: int = 1024
WORKER_COUNT: int = 16
REQUEST_QUEUE_SIZE: int = 64
LOG_FORMAT: str = "plain"
TLS_SESSION_ID: bytes = b"gemini-server"
DEFAULT_MIMETYPE: str = "application/octet-stream"
INDEX_EXTENSIONS: dict[str, str] = {"gmi": "text/gemini"}
