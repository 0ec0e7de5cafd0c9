"""Tests for archive decoding."""

from __future__ import annotations

import pytest

from bridge.exceptions import ArchiveDecodeError, ErrorKind
from bridge.services.archive_service import decode_archive, normalize_path
from tests.helpers import make_archive


class TestDecodeArchive:
    def test_decodes_text_files(self) -> None:
        data = make_archive({"a.txt": "hi", "src/main.py": "print('x')\n"})
        assert decode_archive(data) == {"a.txt": "hi", "src/main.py": "print('x')\n"}

    def test_keeps_directory_markers(self) -> None:
        data = make_archive({"src/a.txt": "a"}, directories=("src",))
        files = decode_archive(data)
        assert files["src/"] == ""
        assert files["src/a.txt"] == "a"

    def test_replaces_undecodable_bytes(self) -> None:
        data = make_archive({"bin.dat": b"ok\xff\xfe"})
        assert decode_archive(data)["bin.dat"].startswith("ok")

    def test_rejects_non_zip_data(self) -> None:
        with pytest.raises(ArchiveDecodeError) as exc_info:
            decode_archive(b"definitely not a zip")
        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert exc_info.value.original_message

    def test_empty_archive_decodes_to_nothing(self) -> None:
        assert decode_archive(make_archive({})) == {}


class TestNormalizePath:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("a.txt", "a.txt"),
            ("./a.txt", "a.txt"),
            ("/abs/a.txt", "abs/a.txt"),
            ("dir\\win.txt", "dir/win.txt"),
        ],
    )
    def test_normalizes(self, raw: str, expected: str) -> None:
        assert normalize_path(raw) == expected
