"""Unit tests for legacy code page decoding."""

from pathlib import Path

import pytest

from upd_loader.parsing.decoding import read_text
from upd_loader.shared.errors import IOFailureError


def test_read_text_windows_1251(tmp_path: Path) -> None:
    """Should decode Cyrillic text stored in windows-1251."""
    path = tmp_path / "doc.xml"
    path.write_bytes("Счет-фактура № 42".encode("windows-1251"))

    assert read_text(path) == "Счет-фактура № 42"


def test_read_text_undefined_byte_replaced(tmp_path: Path) -> None:
    """Should replace bytes undefined in the code page instead of failing."""
    path = tmp_path / "doc.xml"
    path.write_bytes(b"A\x98B")

    assert read_text(path) == "A�B"


def test_read_text_custom_encoding(tmp_path: Path) -> None:
    path = tmp_path / "doc.xml"
    path.write_bytes("Тест".encode("utf-8"))

    assert read_text(path, encoding="utf-8") == "Тест"


def test_read_text_missing_file(tmp_path: Path) -> None:
    """Should raise IOFailureError when the file cannot be read."""
    with pytest.raises(IOFailureError):
        read_text(tmp_path / "missing.xml")
