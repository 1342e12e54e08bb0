"""Filesystem indexer that registers one handler per file."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography.x509 import Certificate

from config import DEFAULT_MIMETYPE, INDEX_EXTENSIONS, WRITE_CHUNK_SIZE
from response import NOT_FOUND, SUCCESS, format_status_line
from utils import get_content_type, server_path

if TYPE_CHECKING:
    from server import GeminiServer
    from socket_handler import Connection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilePage:
    """Serves the current contents of one file; nothing is cached."""

    file_path: Path
    mimetype: str

    def __call__(self, connection: Connection, _certificate: Certificate | None, _query: str) -> None:
        try:
            file_obj = self.file_path.open("rb")
        except FileNotFoundError:
            connection.write(format_status_line(NOT_FOUND, "Not found"))
            return

        with file_obj:
            connection.write(format_status_line(SUCCESS, self.mimetype))
            while True:
                chunk = file_obj.read(WRITE_CHUNK_SIZE)
                if not chunk:
                    break
                connection.write(chunk)


def index_dir(
    server: GeminiServer,
    dir_path: str | Path,
    prefix: str = "/",
    extensions: Mapping[str, str] = INDEX_EXTENSIONS,
    default: str = DEFAULT_MIMETYPE,
) -> list[str]:
    """Register every readable file below ``dir_path`` under ``prefix``.

    ``index_dir(server, "/home/user/Downloads", "/computer/Downloads/")`` makes
    ``/home/user/Downloads/a/b.gmi`` available at ``/computer/Downloads/a/b.gmi``.
    Returns the registered paths.
    """
    root = Path(dir_path)
    if not root.is_dir():
        raise NotADirectoryError(f"Cannot index {root}: not a directory")

    registered: list[str] = []
    for entry in sorted(root.rglob("*")):
        if not entry.is_file() or not os.access(entry, os.R_OK):
            continue
        path = server_path(prefix, entry.relative_to(root))
        mimetype = get_content_type(entry, extensions, default)
        server.register_handler(path, FilePage(file_path=entry, mimetype=mimetype))
        registered.append(path)
        logger.debug("Indexed %s as %s (%s)", entry, path, mimetype)

    logger.info("Indexed %d files from %s under %s", len(registered), root, prefix)
    return registered
