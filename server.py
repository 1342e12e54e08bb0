"""Main Gemini server entry point and connection lifecycle orchestration."""

from __future__ import annotations

import argparse
import json
import logging
import socket
import time

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from OpenSSL import SSL

from config import (
    ACCEPT_POLL_SECS,
    HOST,
    LOG_FORMAT,
    PORT,
    REQUEST_QUEUE_SIZE,
    SOCKET_TIMEOUT_SECS,
    WORKER_COUNT,
)
from handlers.directory import index_dir
from handlers.example_handlers import certificate_page, home, input_page, plain, secret_input_page
from handlers.pages import redirect_permanent
from metrics import MetricsRegistry
from request import (
    GeminiRequest,
    MalformedRequestError,
    RequestTooLongError,
    UnsupportedSchemeError,
)
from response import TEMPORARY_FAILURE, format_status_line
from router import Handler, Router
from socket_handler import ClientAddress, Connection, GeminiReadError, read_request_line
from thread_pool import ThreadPool
from tls import HandshakeError, TLSListener, load_certificate, load_private_key

logger = logging.getLogger(__name__)

LOG_FORMATS = {"plain", "json"}


class HandlerExecutionError(Exception):
    """Raised when a route handler fails while serving a request."""

    def __init__(self, path: str, cause: BaseException) -> None:
        super().__init__(f"Handler for {path!r} failed: {cause!r}")
        self.path = path


class GeminiServer:
    """Gemini server: TLS listener, route table and per-connection workers.

    Usage::

        server = GeminiServer(certificate, private_key)
        server.register_handler("/", static_page(20, "text/gemini", "# Hello"))
        server.start("localhost", 1965)
        server.listen(log_requests=True)
    """

    def __init__(
        self,
        certificate: x509.Certificate,
        private_key: PrivateKeyTypes,
        *,
        router: Router | None = None,
        worker_count: int = WORKER_COUNT,
        request_queue_size: int = REQUEST_QUEUE_SIZE,
        socket_timeout_secs: float | None = SOCKET_TIMEOUT_SECS,
        log_format: str = LOG_FORMAT,
        logger: logging.Logger | None = None,
    ) -> None:
        if log_format not in LOG_FORMATS:
            raise ValueError(f"Unsupported log format: {log_format}")
        self.router = router if router is not None else Router()
        self.worker_count = worker_count
        self.request_queue_size = request_queue_size
        self.socket_timeout_secs = socket_timeout_secs
        self.log_format = log_format
        self.logger = logger or logging.getLogger(__name__)
        self.log_requests = False
        self.metrics = MetricsRegistry()

        self._listener = TLSListener(certificate, private_key)
        self._pool: ThreadPool | None = None
        self._running = False

    @property
    def host(self) -> str:
        return self._listener.host

    @property
    def port(self) -> int:
        return self._listener.port

    @property
    def not_found_handler(self) -> Handler:
        return self.router.not_found_handler

    @not_found_handler.setter
    def not_found_handler(self, handler: Handler) -> None:
        self.router.not_found_handler = handler

    def register_handler(self, path: str, handler: Handler) -> None:
        self.router.register(path, handler)

    def copy_handler(self, path: str, new_path: str) -> None:
        """Bind ``new_path`` to the handler currently at ``path``.

        Registering a different handler at ``path`` later leaves ``new_path`` alone.
        """
        self.router.copy(path, new_path)

    def delete_handler(self, path: str) -> bool:
        return self.router.delete(path)

    def start(self, host: str = HOST, port: int = PORT) -> None:
        """Bind the TLS listener. Requests are served once ``listen`` runs."""
        self._listener.start(host, port)

    def listen(self, log_requests: bool = False) -> None:
        """Accept and serve connections until ``stop`` is called. Blocks."""
        if not self._listener.is_bound:
            raise RuntimeError("Call start() before listen()")
        self.log_requests = log_requests
        self._pool = ThreadPool(
            self._handle_client,
            worker_count=self.worker_count,
            queue_size=self.request_queue_size,
        )
        self._pool.start()

        self._running = True
        try:
            while self._running:
                try:
                    accepted = self._listener.accept_client()
                except (OSError, RuntimeError) as exc:
                    if not self._running:
                        break
                    self.logger.error("Accept failed: %s", exc)
                    time.sleep(ACCEPT_POLL_SECS)
                    continue

                if accepted is None:
                    continue
                client_socket, address = accepted
                if self._pool is None or not self._pool.submit(client_socket, address):
                    self._reject_client(client_socket, address)
        finally:
            if self._pool is not None:
                self._pool.shutdown()
                self._pool = None
            self._listener.close()

    def stop(self) -> None:
        self._running = False
        self._listener.close()

    def _reject_client(self, client_socket: socket.socket, address: ClientAddress) -> None:
        client_socket.close()
        self.metrics.connection_rejected()
        self.logger.warning("Worker queue full, dropped connection from %s", address[0])

    def _handle_client(self, client_socket: socket.socket, address: ClientAddress) -> None:
        started_at = time.perf_counter()
        self.metrics.connection_opened()
        try:
            try:
                connection = self._listener.secure(
                    client_socket,
                    address,
                    timeout_secs=self.socket_timeout_secs,
                )
            except HandshakeError as exc:
                self.metrics.record_handshake_failure()
                self.logger.warning("%s", exc)
                return

            try:
                with connection:
                    request = self._serve(connection)
            except (SSL.Error, OSError) as exc:
                self.metrics.record_read_error(exc.__class__.__name__)
                self.logger.warning("Connection error with %s: %s", address[0], exc)
                return
            self._record_and_log(connection, request, started_at)
        finally:
            self.metrics.connection_closed()

    def _serve(self, connection: Connection) -> GeminiRequest | None:
        """Parse, route and handle one request; returns the request when it was routed."""
        try:
            raw_line = read_request_line(connection)
            request = GeminiRequest.from_line(raw_line)
            request.ensure_supported_scheme()
        except UnsupportedSchemeError as exc:
            self.metrics.record_read_error(exc.__class__.__name__)
            connection.write(format_status_line(exc.status_code, str(exc)))
            return None
        except RequestTooLongError as exc:
            self.metrics.record_read_error(exc.__class__.__name__)
            connection.write(format_status_line(exc.status_code, "Request too long"))
            return None
        except MalformedRequestError as exc:
            self.metrics.record_read_error(exc.__class__.__name__)
            self.logger.debug("Malformed request from %s: %s", connection.address[0], exc)
            connection.write(format_status_line(exc.status_code, "Bad request"))
            return None
        except GeminiReadError as exc:
            self.metrics.record_read_error(exc.__class__.__name__)
            self.logger.debug("No request from %s: %s", connection.address[0], exc)
            return None

        handler = self.router.resolve(request.path)
        try:
            self._invoke(handler, connection, request)
        except HandlerExecutionError:
            self.metrics.record_handler_error()
            self.logger.exception("Unhandled error in route handler")
            if connection.bytes_written == 0:
                connection.write(format_status_line(TEMPORARY_FAILURE, "Temporary failure"))
        return request

    def _invoke(self, handler: Handler, connection: Connection, request: GeminiRequest) -> None:
        try:
            handler(connection, connection.peer_certificate, request.query)
        except Exception as exc:
            raise HandlerExecutionError(request.path, exc) from exc

    def _record_and_log(
        self,
        connection: Connection,
        request: GeminiRequest | None,
        started_at: float,
    ) -> None:
        duration_ms = (time.perf_counter() - started_at) * 1000
        path = request.path if request is not None else "-"
        route_key = path if request is not None and path in self.router else None
        self.metrics.record_request(
            status_code=connection.status,
            duration_ms=duration_ms,
            bytes_sent=connection.bytes_sent,
            route_key=route_key,
        )
        if not self.log_requests or request is None:
            return

        event = {
            "client": connection.address[0],
            "path": path,
            "status": connection.status,
            "bytes_out": connection.bytes_sent,
            "latency_ms": round(duration_ms, 3),
        }
        if self.log_format == "json":
            self.logger.info(json.dumps(event, sort_keys=True))
            return

        self.logger.info(
            "client=%s path=%s status=%s bytes_out=%s duration_ms=%.2f",
            event["client"],
            event["path"],
            event["status"],
            event["bytes_out"],
            duration_ms,
        )


def build_demo_router() -> Router:
    router = Router()
    router.register("/", home)
    router.copy("/", "")
    router.register("/cert", certificate_page)
    router.register("/input", input_page)
    router.register("/inputpw", secret_input_page)
    router.register("/plain", plain)
    router.register("/redirect", redirect_permanent("/"))
    return router


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Gemini server")
    parser.add_argument("--cert", required=True, help="PEM certificate file")
    parser.add_argument("--key", required=True, help="PEM private key file")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--root", help="Serve the files below this directory instead of the demo pages")
    parser.add_argument("--prefix", default="/", help="Route prefix for --root")
    parser.add_argument("--workers", type=int, default=WORKER_COUNT)
    parser.add_argument("--log-format", choices=sorted(LOG_FORMATS), default=LOG_FORMAT)
    parser.add_argument("--log-requests", action="store_true")
    return parser.parse_args()


if __name__ == "__main__":
    args = _parse_args()
    logging.basicConfig(level=logging.INFO)
    server = GeminiServer(
        load_certificate(args.cert),
        load_private_key(args.key),
        router=None if args.root else build_demo_router(),
        worker_count=args.workers,
        log_format=args.log_format,
    )
    if args.root:
        index_dir(server, args.root, args.prefix)
    server.start(args.host, args.port)
    try:
        server.listen(log_requests=args.log_requests)
    except KeyboardInterrupt:
        server.stop()
