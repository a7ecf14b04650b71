"""Structural checks for SurrealQL dumps and their gzip artifacts"""

import gzip
import hashlib
import zlib
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .errors import ValidationError

DEFAULT_MARKERS = ("OPTION IMPORT", "BEGIN TRANSACTION", "DEFINE ")
CHUNK_SIZE = 64 * 1024
# Markers are looked for in the head of the dump only
MARKER_SCAN_BYTES = 1024 * 1024


@dataclass
class ValidationResult:
    """Outcome of a successful structural check"""

    path: Path
    raw_size_bytes: int
    compressed: bool
    marker: str


def _find_marker(head: bytes, markers: Iterable[str]) -> str | None:
    text = head.decode("utf-8", errors="replace")
    for marker in markers:
        if marker in text:
            return marker
    return None


def validate_dump(path: Path, markers: Iterable[str] = DEFAULT_MARKERS) -> ValidationResult:
    """Check an uncompressed export: exists, non-empty, looks like SurrealQL"""
    markers = tuple(markers)
    if not path.is_file():
        raise ValidationError(f"Export file does not exist: {path}")

    size = path.stat().st_size
    if size == 0:
        raise ValidationError(f"Export file is empty: {path}")

    with open(path, "rb") as f:
        head = f.read(MARKER_SCAN_BYTES)

    marker = _find_marker(head, markers)
    if marker is None:
        raise ValidationError(f"Export file does not contain valid SurrealQL structure: {path}")

    return ValidationResult(path=path, raw_size_bytes=size, compressed=False, marker=marker)


def validate_artifact(path: Path, markers: Iterable[str] = DEFAULT_MARKERS) -> ValidationResult:
    """Fully decompress a gzip artifact and check the dump inside it

    The whole stream is read so a truncated file fails on the missing
    trailer even when its head decompresses fine.
    """
    markers = tuple(markers)
    if not path.is_file():
        raise ValidationError(f"Backup file does not exist: {path}")
    if path.stat().st_size == 0:
        raise ValidationError(f"Backup file is empty: {path}")

    head = b""
    raw_size = 0
    try:
        with gzip.open(path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                if len(head) < MARKER_SCAN_BYTES:
                    head += chunk[: MARKER_SCAN_BYTES - len(head)]
                raw_size += len(chunk)
    except (OSError, EOFError, zlib.error) as e:
        raise ValidationError(f"Backup file is corrupted (gzip integrity check failed): {e}") from e

    if raw_size == 0:
        raise ValidationError(f"Backup file decompresses to an empty dump: {path}")

    marker = _find_marker(head, markers)
    if marker is None:
        raise ValidationError(f"Backup file contains invalid SurrealQL structure: {path}")

    return ValidationResult(path=path, raw_size_bytes=raw_size, compressed=True, marker=marker)


def calculate_checksum(file_path: Path, algorithm: str = "sha256") -> str:
    """Calculate checksum of a file

    Args:
        file_path: Path to file
        algorithm: Hash algorithm (default: sha256)

    Returns:
        Hexadecimal checksum string
    """
    hash_obj = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            hash_obj.update(chunk)
    return hash_obj.hexdigest()
