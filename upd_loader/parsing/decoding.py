"""Legacy code page decoding for UPD payloads."""

from pathlib import Path

from upd_loader.shared.errors import IOFailureError

DEFAULT_ENCODING = "windows-1251"


def read_text(path: Path, encoding: str = DEFAULT_ENCODING) -> str:
    """Read a payload file through a single-byte code page.

    Decoding never fails: bytes the code page leaves undefined (0x98 in
    windows-1251) become U+FFFD.

    Args:
        path: File to read
        encoding: Source code page

    Returns:
        Decoded text

    Raises:
        IOFailureError: If the file cannot be read
    """
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise IOFailureError(f"Failed to read {path.name}: {e}") from e
    return raw.decode(encoding, errors="replace")
