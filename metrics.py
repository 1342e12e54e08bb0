"""Thread-safe in-memory counters for the Gemini server."""

from __future__ import annotations

import threading
from collections import Counter

LATENCY_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2000, 5000)

# Keyed by the first digit of the two-digit status code.
STATUS_CLASSES = {
    1: "input",
    2: "success",
    3: "redirect",
    4: "temporary_failure",
    5: "permanent_failure",
    6: "client_certificate",
}

NO_STATUS = "-"


def status_class(status_code: int | None) -> str:
    if status_code is None:
        return NO_STATUS
    return STATUS_CLASSES.get(status_code // 10, "unknown")


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: Counter[str] = Counter()
        self._active_connections = 0
        self._total_requests = 0
        self._bytes_sent_total = 0
        self._status_counts: Counter[str] = Counter()
        self._status_classes: Counter[str] = Counter()
        self._latency_buckets: Counter[str] = Counter()
        self._read_errors_by_type: Counter[str] = Counter()
        self._requests_by_route: Counter[str] = Counter()

    def connection_opened(self) -> None:
        with self._lock:
            self._active_connections += 1
            self._connections["total"] += 1

    def connection_closed(self) -> None:
        with self._lock:
            self._active_connections = max(0, self._active_connections - 1)

    def connection_rejected(self) -> None:
        self._bump("rejected")

    def record_handshake_failure(self) -> None:
        self._bump("handshake_failures")

    def record_handler_error(self) -> None:
        self._bump("handler_errors")

    def record_read_error(self, error_type: str) -> None:
        with self._lock:
            self._read_errors_by_type[error_type] += 1

    def record_request(
        self,
        status_code: int | None,
        duration_ms: float,
        bytes_sent: int,
        *,
        route_key: str | None = None,
    ) -> None:
        """Count one finished connection.

        ``status_code`` is ``None`` when the client went away before any
        status line was written.
        """
        with self._lock:
            self._total_requests += 1
            self._status_counts[NO_STATUS if status_code is None else str(status_code)] += 1
            self._status_classes[status_class(status_code)] += 1
            self._bytes_sent_total += bytes_sent
            self._latency_buckets[_bucket_label(duration_ms)] += 1
            if route_key is not None:
                self._requests_by_route[route_key] += 1

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "total_requests": self._total_requests,
                "active_connections": self._active_connections,
                "connections_total": self._connections["total"],
                "connections_rejected": self._connections["rejected"],
                "handshake_failures": self._connections["handshake_failures"],
                "handler_errors": self._connections["handler_errors"],
                "bytes_sent_total": self._bytes_sent_total,
                "status_counts": dict(self._status_counts),
                "status_classes": dict(self._status_classes),
                "latency_buckets_ms": dict(self._latency_buckets),
                "read_errors_by_type": dict(self._read_errors_by_type),
                "requests_by_route": dict(self._requests_by_route),
            }

    def _bump(self, key: str) -> None:
        with self._lock:
            self._connections[key] += 1


def _bucket_label(duration_ms: float) -> str:
    for limit in LATENCY_BUCKETS_MS:
        if duration_ms <= limit:
            return f"<= {limit}ms"
    return f"> {LATENCY_BUCKETS_MS[-1]}ms"
