"""Routing table mapping exact request paths to handlers."""

from __future__ import annotations

import threading
from collections.abc import Callable

from cryptography.x509 import Certificate

from handlers.pages import static_page
from response import NOT_FOUND
from socket_handler import Connection

Handler = Callable[[Connection, Certificate | None, str], None]


class Router:
    """Exact-match route table with a replaceable not-found handler.

    Writers serialize on a lock and publish a fresh mapping, so lookups read
    a consistent snapshot without locking.
    """

    def __init__(self, not_found_handler: Handler | None = None) -> None:
        self._write_lock = threading.Lock()
        self._routes: dict[str, Handler] = {}
        self._not_found_handler: Handler = not_found_handler or static_page(NOT_FOUND, "Not found")

    @property
    def not_found_handler(self) -> Handler:
        return self._not_found_handler

    @not_found_handler.setter
    def not_found_handler(self, handler: Handler) -> None:
        if not callable(handler):
            raise TypeError("not_found_handler must be callable")
        with self._write_lock:
            self._not_found_handler = handler

    def register(self, path: str, handler: Handler) -> None:
        if not callable(handler):
            raise TypeError("handler must be callable")
        with self._write_lock:
            routes = dict(self._routes)
            routes[path] = handler
            self._routes = routes

    def copy(self, path: str, new_path: str) -> None:
        with self._write_lock:
            if path not in self._routes:
                raise KeyError(path)
            routes = dict(self._routes)
            routes[new_path] = routes[path]
            self._routes = routes

    def delete(self, path: str) -> bool:
        with self._write_lock:
            if path not in self._routes:
                return False
            routes = dict(self._routes)
            del routes[path]
            self._routes = routes
            return True

    def lookup(self, path: str) -> Handler | None:
        return self._routes.get(path)

    def resolve(self, path: str) -> Handler:
        handler = self._routes.get(path)
        if handler is None:
            return self._not_found_handler
        return handler

    def routes(self) -> dict[str, Handler]:
        return dict(self._routes)

    def __contains__(self, path: object) -> bool:
        return path in self._routes
