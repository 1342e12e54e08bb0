"""Utility helpers shared across server modules."""

import mimetypes
from collections.abc import Mapping
from pathlib import Path

from config import DEFAULT_MIMETYPE, INDEX_EXTENSIONS


def get_content_type(
    file_path: Path,
    extensions: Mapping[str, str] = INDEX_EXTENSIONS,
    default: str = DEFAULT_MIMETYPE,
) -> str:
    """Mimetype from the explicit extension map first, then the platform registry."""
    extension = file_path.suffix.removeprefix(".")
    if extension in extensions:
        return extensions[extension]
    content_type, _encoding = mimetypes.guess_type(file_path.name)
    return content_type or default


def server_path(prefix: str, relative_path: Path) -> str:
    """Join a route prefix and a relative file path with exactly one slash."""
    relative = relative_path.as_posix()
    if not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return f"{prefix}{relative}"
