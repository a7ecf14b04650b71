"""Two-slot rolling artifact store

Each slot owns exactly one canonical artifact path. A new backup for a slot
replaces the old file with an atomic rename, so the store never holds more
than two artifacts and never exposes a half-written one.
"""

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import StorageError, UsageError

ARTIFACT_SUFFIX = "_backup.surql.gz"
RECORD_SUFFIX = "_backup.json"
TEMP_DIR_NAME = "temp"


class Slot(Enum):
    """Rotation bucket"""

    NIGHTLY = "nightly"
    WEEKLY = "weekly"

    @classmethod
    def parse(cls, value: "str | Slot") -> "Slot":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(s.value for s in cls)
            raise UsageError(f"Invalid slot '{value}' (expected one of: {choices})") from None

    def __str__(self) -> str:
        return self.value


@dataclass
class ArtifactMetadata:
    """What the store knows about one slot's artifact"""

    slot: Slot
    path: Path
    exists: bool
    size_bytes: int = 0
    modified_at: datetime | None = None
    created_at: datetime | None = None
    compressed: bool = True
    validated: bool = False
    checksum_sha256: str | None = None
    raw_size_bytes: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot": self.slot.value,
            "path": str(self.path),
            "exists": self.exists,
            "size_bytes": self.size_bytes,
            "modified": self.modified_at.isoformat() if self.modified_at else None,
            "created": self.created_at.isoformat() if self.created_at else None,
            "compressed": self.compressed,
            "validated": self.validated,
            "checksum_sha256": self.checksum_sha256,
            "raw_size_bytes": self.raw_size_bytes,
        }


def _fsync_dir(directory: Path) -> None:
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass  # not supported on every filesystem
    finally:
        os.close(fd)


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write JSON next to ``path`` and rename it into place"""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise


class ArtifactStore:
    """Explicit {slot: canonical path} map over a backup directory"""

    def __init__(self, backup_dir: Path, temp_dir: Path | None = None):
        self.backup_dir = Path(backup_dir)
        self.temp_dir = Path(temp_dir) if temp_dir else self.backup_dir / TEMP_DIR_NAME
        self.paths: dict[Slot, Path] = {slot: self.backup_dir / f"{slot.value}{ARTIFACT_SUFFIX}" for slot in Slot}

    def init_storage(self) -> None:
        """Create the backup and temp directories"""
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create backup directories under {self.backup_dir}: {e}") from e

    def path(self, slot: Slot) -> Path:
        return self.paths[slot]

    def record_path(self, slot: Slot) -> Path:
        return self.backup_dir / f"{slot.value}{RECORD_SUFFIX}"

    def temp_path(self, slot: Slot, suffix: str, tag: str | None = None) -> Path:
        """Per-run scratch path inside the temp dir"""
        stamp = tag or datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        return self.temp_dir / f"{slot.value}_{stamp}{suffix}"

    def load_record(self, slot: Slot) -> dict[str, Any] | None:
        """Read the slot's status record, or None if missing or unreadable"""
        record_path = self.record_path(slot)
        if not record_path.exists():
            return None
        try:
            with open(record_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def metadata(self, slot: Slot) -> ArtifactMetadata:
        path = self.path(slot)
        try:
            stat = path.stat()
        except FileNotFoundError:
            return ArtifactMetadata(slot=slot, path=path, exists=False)

        meta = ArtifactMetadata(
            slot=slot,
            path=path,
            exists=True,
            size_bytes=stat.st_size,
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

        record = self.load_record(slot)
        # A record is only trusted when it describes the file on disk
        if record and record.get("size_bytes") == stat.st_size:
            meta.validated = bool(record.get("validated", False))
            meta.checksum_sha256 = record.get("checksum_sha256")
            meta.raw_size_bytes = record.get("raw_size_bytes")
            try:
                meta.created_at = datetime.fromisoformat(record["timestamp"])
            except (KeyError, TypeError, ValueError):
                meta.created_at = None
        return meta

    def all_metadata(self) -> dict[Slot, ArtifactMetadata]:
        return {slot: self.metadata(slot) for slot in Slot}

    def artifacts(self) -> list[Path]:
        """Canonical artifact files currently on disk"""
        return [path for path in self.paths.values() if path.is_file()]

    def replace(self, slot: Slot, staged: Path, record: dict[str, Any]) -> ArtifactMetadata:
        """Atomically move ``staged`` over the slot's canonical path

        The staged file must live on the same filesystem as the backup dir.
        The status record is written after the artifact is in place.
        """
        target = self.path(slot)
        try:
            with open(staged, "rb") as f:
                os.fsync(f.fileno())
            os.chmod(staged, 0o600)
            os.replace(staged, target)
            _fsync_dir(self.backup_dir)
        except OSError as e:
            raise StorageError(f"Failed to move backup into place at {target}: {e}") from e

        try:
            write_json_atomic(self.record_path(slot), record)
        except OSError as e:
            raise StorageError(f"Failed to write status record for slot '{slot}': {e}") from e

        return self.metadata(slot)

    def clean_temp(self, slot: Slot | None = None) -> int:
        """Remove leftover scratch files, for one slot or all; returns the count"""
        if not self.temp_dir.exists():
            return 0

        pattern = f"{slot.value}_*" if slot else "*"
        removed = 0
        for leftover in self.temp_dir.glob(pattern):
            if leftover.is_file():
                try:
                    leftover.unlink()
                    removed += 1
                except OSError:
                    pass
        return removed
