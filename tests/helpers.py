"""Test helpers for building upload archives."""

from __future__ import annotations

import io
import zipfile


def make_archive(files: dict[str, str | bytes], *, directories: tuple[str, ...] = ()) -> bytes:
    """Build an in-memory ZIP archive from a path -> content mapping."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for directory in directories:
            archive.writestr(directory.rstrip("/") + "/", "")
        for path, content in files.items():
            archive.writestr(path, content)
    return buffer.getvalue()
