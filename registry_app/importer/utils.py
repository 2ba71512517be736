"""
Importer-specific utilities for reading and vetting uploads.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

CSV_EXTENSIONS: tuple[str, ...] = ("csv",)
CSV_MIMETYPES: tuple[str, ...] = ("text/csv",)


class UploadTooLargeError(ValueError):
    """Raised when an upload exceeds the configured size ceiling."""

    def __init__(self, size: int, max_bytes: int) -> None:
        super().__init__(
            f"File is {size / (1024 * 1024):.1f} MB; the maximum allowed size is {max_bytes // (1024 * 1024)} MB."
        )
        self.size = size
        self.max_bytes = max_bytes


class UnsupportedUploadError(ValueError):
    """Raised when an upload is neither named nor typed as CSV."""

    def __init__(self, filename: str | None) -> None:
        super().__init__("Only CSV files are allowed.")
        self.filename = filename


def allowed_file(filename: str, allowed_extensions: Iterable[str] = CSV_EXTENSIONS) -> bool:
    """
    Validate the uploaded filename extension against the allowed set.
    """

    if not filename or "." not in filename:
        return False
    extension = filename.rsplit(".", 1)[1].lower()
    return extension in {ext.lower() for ext in allowed_extensions}


def sanitize_filename(filename: str | None) -> str | None:
    """Return a filesystem- and log-safe version of ``filename`` (or None)."""

    if not filename:
        return None
    return secure_filename(filename) or None


def ensure_size(data: bytes, max_bytes: int | None) -> bytes:
    if max_bytes is not None and len(data) > max_bytes:
        raise UploadTooLargeError(len(data), max_bytes)
    return data


def read_upload(source: Path | str | FileStorage, *, max_bytes: int | None = None) -> tuple[bytes, str | None]:
    """
    Read an upload from disk or a werkzeug ``FileStorage``.

    Files are accepted by ``.csv`` extension, or for uploads also by a
    ``text/csv`` mimetype. Returns the raw bytes and the sanitized original
    filename.
    """

    if isinstance(source, FileStorage):
        filename = source.filename
        if source.mimetype not in CSV_MIMETYPES and not allowed_file(filename or ""):
            raise UnsupportedUploadError(filename)
        data = source.read()
    else:
        path = Path(source)
        filename = path.name
        if not allowed_file(filename):
            raise UnsupportedUploadError(filename)
        data = path.read_bytes()
    return ensure_size(data, max_bytes), sanitize_filename(filename)

