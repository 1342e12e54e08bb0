"""Bounded worker pool for accepted client sockets."""

from __future__ import annotations

import logging
import queue
import socket
import threading
import time
from collections.abc import Callable
from typing import NamedTuple

from config import REQUEST_QUEUE_SIZE, WORKER_COUNT

logger = logging.getLogger(__name__)

ClientAddress = tuple[str, int]
ClientHandler = Callable[[socket.socket, ClientAddress], None]

QUEUE_POLL_SECS = 0.2
WORKER_JOIN_SECS = 1.0


class PendingClient(NamedTuple):
    client_socket: socket.socket
    address: ClientAddress


class ThreadPool:
    """Fixed number of workers fed from a bounded admission queue.

    ``submit`` never blocks: when every worker is busy and the queue is full
    the caller gets ``False`` and owns the socket again. A handler that raises
    is logged and the worker moves on to the next client.
    """

    def __init__(
        self,
        handler: ClientHandler,
        worker_count: int = WORKER_COUNT,
        queue_size: int = REQUEST_QUEUE_SIZE,
    ) -> None:
        if worker_count <= 0:
            raise ValueError("worker_count must be positive")
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")

        self._handler = handler
        self._worker_count = worker_count
        self._pending: queue.Queue[PendingClient | None] = queue.Queue(maxsize=queue_size)
        self._workers: list[threading.Thread] = []
        self._stopping = threading.Event()
        self._busy = 0
        self._idle = threading.Condition()
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def threads(self) -> tuple[threading.Thread, ...]:
        return tuple(self._workers)

    def start(self) -> None:
        for index in range(self._worker_count):
            worker = threading.Thread(
                target=self._work,
                name=f"gemini-worker-{index}",
                daemon=True,
            )
            self._workers.append(worker)
            worker.start()

    def submit(self, client_socket: socket.socket, address: ClientAddress) -> bool:
        if self._stopping.is_set():
            return False
        try:
            self._pending.put_nowait(PendingClient(client_socket, address))
        except queue.Full:
            return False
        return True

    def wait_for_drain(self, timeout: float | None = None) -> bool:
        """Block until no client is queued or being served."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._busy or not self._pending.empty():
                wait_secs = QUEUE_POLL_SECS
                if deadline is not None:
                    wait_secs = min(wait_secs, deadline - time.monotonic())
                    if wait_secs <= 0:
                        return False
                self._idle.wait(timeout=wait_secs)
        return True

    def shutdown(self, *, graceful: bool = False, timeout: float | None = None) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        if graceful:
            self.wait_for_drain(timeout=timeout)

        self._stopping.set()
        dropped = self._drop_pending()
        if dropped:
            logger.debug("Closed %d queued client(s) during shutdown", dropped)
        self._wake_workers()
        for worker in self._workers:
            worker.join(timeout=WORKER_JOIN_SECS)

    def _drop_pending(self) -> int:
        dropped = 0
        while True:
            try:
                pending = self._pending.get_nowait()
            except queue.Empty:
                return dropped
            if pending is not None:
                pending.client_socket.close()
                dropped += 1
            self._pending.task_done()

    def _wake_workers(self) -> None:
        # Workers also poll the stop flag, so a full queue only delays exit.
        for _ in self._workers:
            try:
                self._pending.put_nowait(None)
            except queue.Full:
                return

    def _work(self) -> None:
        while not self._stopping.is_set():
            try:
                pending = self._pending.get(timeout=QUEUE_POLL_SECS)
            except queue.Empty:
                continue
            if pending is None:
                self._pending.task_done()
                return
            self._run(pending)

    def _run(self, pending: PendingClient) -> None:
        with self._idle:
            self._busy += 1
        try:
            self._handler(pending.client_socket, pending.address)
        except Exception:
            logger.exception("Unhandled error while serving %s", pending.address[0])
        finally:
            with self._idle:
                self._busy -= 1
                self._idle.notify_all()
            self._pending.task_done()
