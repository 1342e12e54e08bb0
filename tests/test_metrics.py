"""Unit tests for the metrics registry."""

from metrics import MetricsRegistry, status_class


def test_snapshot_counts_requests_by_status_and_route() -> None:
    metrics = MetricsRegistry()

    metrics.record_request(20, 3.0, 120, route_key="/")
    metrics.record_request(20, 40.0, 80, route_key="/")
    metrics.record_request(51, 7000.0, 15)
    metrics.record_request(None, 1.0, 0)

    snapshot = metrics.snapshot()

    assert snapshot["total_requests"] == 4
    assert snapshot["status_counts"] == {"20": 2, "51": 1, "-": 1}
    assert snapshot["requests_by_route"] == {"/": 2}
    assert snapshot["bytes_sent_total"] == 215
    assert snapshot["latency_buckets_ms"] == {"<= 5ms": 2, "<= 50ms": 1, "> 5000ms": 1}


def test_connection_counters() -> None:
    metrics = MetricsRegistry()

    metrics.connection_opened()
    metrics.connection_opened()
    metrics.connection_closed()
    metrics.connection_rejected()
    metrics.record_handshake_failure()
    metrics.record_handler_error()
    metrics.record_read_error("SocketTimeoutError")

    snapshot = metrics.snapshot()

    assert snapshot["active_connections"] == 1
    assert snapshot["connections_total"] == 2
    assert snapshot["connections_rejected"] == 1
    assert snapshot["handshake_failures"] == 1
    assert snapshot["handler_errors"] == 1
    assert snapshot["read_errors_by_type"] == {"SocketTimeoutError": 1}


def test_active_connections_never_go_negative() -> None:
    metrics = MetricsRegistry()

    metrics.connection_closed()

    assert metrics.snapshot()["active_connections"] == 0


def test_status_classes_group_by_first_digit() -> None:
    metrics = MetricsRegistry()

    for status in (10, 11, 20, 31, 59, 60):
        metrics.record_request(status, 1.0, 0)
    metrics.record_request(None, 1.0, 0)

    assert metrics.snapshot()["status_classes"] == {
        "input": 2,
        "success": 1,
        "redirect": 1,
        "permanent_failure": 1,
        "client_certificate": 1,
        "-": 1,
    }


def test_status_class_helper() -> None:
    assert status_class(40) == "temporary_failure"
    assert status_class(None) == "-"
    assert status_class(99) == "unknown"
