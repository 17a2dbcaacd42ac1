from __future__ import annotations

from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import BinaryIO

from reelcast.core.errors import FingerprintError

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "Fingerprint",
    "fingerprint_stream",
    "fingerprint_file",
]

DEFAULT_CHUNK_SIZE = 8 * 1024 * 1024


@dataclass(slots=True, frozen=True)
class Fingerprint:
    """Content digest of a file together with the number of bytes it covers."""

    algo: str
    value: str
    size_bytes: int


def fingerprint_stream(handle: BinaryIO, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Fingerprint:
    """Return the SHA256 digest of every byte remaining in ``handle``.

    Args:
        handle: A binary stream positioned at the start of the content.
        chunk_size: The chunk size to use when reading the stream.

    Returns:
        The fingerprint of the exact bytes read.
    """
    digest = sha256()
    total = 0
    while chunk := handle.read(chunk_size):
        digest.update(chunk)
        total += len(chunk)
    return Fingerprint(algo="sha256", value=digest.hexdigest(), size_bytes=total)


def fingerprint_file(path: Path, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Fingerprint:
    """Return the SHA256 fingerprint for the file at ``path``.

    Args:
        path: The path to the file.
        chunk_size: The chunk size to use when reading the file.

    Returns:
        The fingerprint.

    Raises:
        FingerprintError: The file could not be opened or read to completion.
    """
    try:
        with path.open("rb") as handle:
            return fingerprint_stream(handle, chunk_size=chunk_size)
    except OSError as exc:
        raise FingerprintError(f"cannot read {path}: {exc}") from exc
