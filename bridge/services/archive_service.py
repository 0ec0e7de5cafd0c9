"""Decode project archives into a path -> text content mapping."""

from __future__ import annotations

import io
import logging
import zipfile

from bridge.exceptions import ArchiveDecodeError

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Return a forward-slash, relative form of an archive member name."""
    normalized = path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


def decode_archive(data: bytes) -> dict[str, str]:
    """Decompress a ZIP archive held in memory.

    Directory members are kept with their trailing slash so callers can drop
    them as directory markers. Undecodable bytes are replaced rather than
    rejected. Later members overwrite earlier ones with the same path.

    Raises ArchiveDecodeError if the data is not a readable ZIP archive.
    """
    files: dict[str, str] = {}
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                path = normalize_path(info.filename)
                if not path:
                    continue
                if info.is_dir():
                    files[path if path.endswith("/") else f"{path}/"] = ""
                    continue
                files[path] = archive.read(info).decode("utf-8", errors="replace")
    except (zipfile.BadZipFile, zipfile.LargeZipFile, RuntimeError, OSError, EOFError) as exc:
        logger.warning("Failed to decode archive: %s", exc)
        msg = f"Failed to decode archive: {exc}"
        raise ArchiveDecodeError(msg, original_message=str(exc)) from exc

    logger.debug("Decoded archive with %d entries", len(files))
    return files
