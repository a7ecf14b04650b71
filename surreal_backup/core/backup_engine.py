"""Core Backup Engine for the SurrealDB rolling backups"""

import gzip
import os
import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog

from ..utils.notifications import NotificationManager
from .artifact_store import ArtifactMetadata, ArtifactStore, Slot
from .config_manager import ConfigManager
from .errors import BackupError, StorageError, ValidationError
from .keyvault import KeyvaultGate
from .locking import SlotLock
from .surreal_client import SurrealClient
from .validation import DEFAULT_MARKERS, calculate_checksum, validate_artifact, validate_dump

DEFAULT_COMPRESSION_LEVEL = 6
DEFAULT_MIN_FREE_SPACE_MB = 100
COPY_CHUNK_SIZE = 1024 * 1024
CREATED_BY = "surreal-backup"
RECORD_VERSION = "1.0"


def create_store(config: ConfigManager) -> ArtifactStore:
    paths = config.get_storage_paths()
    return ArtifactStore(paths["backup"], paths["temp"])


def create_gate(config: ConfigManager) -> KeyvaultGate:
    return KeyvaultGate(
        config.get_storage_paths()["keyvault"],
        timeout=float(config.get_setting("keyvault.timeout", 60)),
        poll_interval=float(config.get_setting("keyvault.poll_interval", 2)),
    )


def create_client(config: ConfigManager) -> SurrealClient:
    return SurrealClient(
        endpoint=config.get_setting("surrealdb.endpoint"),
        binary=config.get_setting("surrealdb.binary", "surreal"),
        health_retries=int(config.get_setting("surrealdb.health_retries", 3)),
        health_retry_delay=float(config.get_setting("surrealdb.health_retry_delay", 5)),
        health_timeout=float(config.get_setting("surrealdb.health_timeout", 10)),
    )


def create_notifier(config: ConfigManager) -> NotificationManager:
    return NotificationManager(
        config.get_webhook_url(), timeout=float(config.get_setting("notifications.timeout", 10))
    )


@dataclass
class BackupResult:
    """Typed outcome of one backup run"""

    slot: str
    ok: bool
    started_at: datetime
    duration_seconds: float
    artifact: ArtifactMetadata | None = None
    raw_size_bytes: int | None = None
    error: BackupError | None = None

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else (self.error.exit_code if self.error else 1)

    @property
    def message(self) -> str:
        if self.error:
            return f"Backup failed: {self.error.message}"
        assert self.artifact is not None
        size_mb = self.artifact.size_bytes / (1024 * 1024)
        return f"Backup successful: {self.artifact.path.name} ({size_mb:.2f} MB in {self.duration_seconds:.1f}s)"


class BackupEngine:
    """Runs one slot's backup: export, compress, validate, atomic replace"""

    def __init__(
        self,
        config_manager: ConfigManager,
        client: SurrealClient | None = None,
        gate: KeyvaultGate | None = None,
        store: ArtifactStore | None = None,
        notifier: NotificationManager | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.config = config_manager
        self.client = client or create_client(config_manager)
        self.gate = gate or create_gate(config_manager)
        self.store = store or create_store(config_manager)
        self.notifier = notifier or create_notifier(config_manager)
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.compression_level = int(
            self.config.get_setting("backup.compression_level", DEFAULT_COMPRESSION_LEVEL)
        )
        self.markers = tuple(self.config.get_setting("backup.validation_markers", list(DEFAULT_MARKERS)))
        self.logger = structlog.get_logger("BackupEngine")

    def _check_disk_space(self, path: Path, required_bytes: int) -> None:
        """Raise StorageError if the filesystem holding ``path`` is short on space"""
        try:
            stat = os.statvfs(path)
        except OSError as e:
            self.logger.warning("backup.disk_check_skipped", operation="backup", error=str(e))
            return

        available_bytes = stat.f_bavail * stat.f_frsize
        if available_bytes < required_bytes:
            raise StorageError(
                f"Insufficient disk space in {path}: {available_bytes / (1024**2):.1f} MB available, "
                f"{required_bytes / (1024**2):.1f} MB required"
            )

    def _compress(self, source: Path, target: Path) -> None:
        try:
            with open(source, "rb") as f_in, gzip.open(target, "wb", compresslevel=self.compression_level) as f_out:
                shutil.copyfileobj(f_in, f_out, COPY_CHUNK_SIZE)
        except OSError as e:
            raise StorageError(f"Compression failed: {e}") from e

    def run(self, slot: "Slot | str") -> BackupResult:
        """Back up the database into ``slot``

        Never raises for expected failures: they come back as
        ``BackupResult.error`` and the slot's previous artifact is left
        untouched.
        """
        started_at = self._now()
        start = time.monotonic()
        slot_name = str(slot)

        try:
            parsed = Slot.parse(slot)
            slot_name = parsed.value
            self.logger.info("backup.started", operation="backup", slot=slot_name, status="started")
            self.store.init_storage()
            with SlotLock(self.store.backup_dir, slot_name, "backup"):
                artifact, raw_size = self._run_pipeline(parsed, started_at, start)

        except BackupError as e:
            duration = round(time.monotonic() - start, 3)
            self.logger.error(
                "backup.failed",
                operation="backup",
                slot=slot_name,
                status="failed",
                error=e.kind,
                error_message=e.message,
                duration_seconds=duration,
                validation="failed" if isinstance(e, ValidationError) else None,
            )
            self.notifier.notify_backup_failure(slot_name, e.message)
            return BackupResult(slot=slot_name, ok=False, started_at=started_at, duration_seconds=duration, error=e)

        duration = round(time.monotonic() - start, 3)
        self.logger.info(
            "backup.completed",
            operation="backup",
            slot=slot_name,
            status="success",
            file_size_bytes=raw_size,
            compressed_size_bytes=artifact.size_bytes,
            duration_seconds=duration,
            validation="passed",
            checksum_sha256=artifact.checksum_sha256,
        )
        self.notifier.notify_backup_success(slot_name, artifact.size_bytes, duration)
        return BackupResult(
            slot=slot_name,
            ok=True,
            started_at=started_at,
            duration_seconds=duration,
            artifact=artifact,
            raw_size_bytes=raw_size,
        )

    def _run_pipeline(self, slot: Slot, started_at: datetime, start: float) -> tuple[ArtifactMetadata, int]:
        min_space = int(self.config.get_setting("storage.min_free_space_mb", DEFAULT_MIN_FREE_SPACE_MB))
        self._check_disk_space(self.store.backup_dir, min_space * 1024 * 1024)

        credentials = self.gate.read()
        self.client.health_check()

        run_tag = started_at.strftime("%Y%m%dT%H%M%S%f")
        dump_path = self.store.temp_path(slot, ".surql", run_tag)
        staged_path = self.store.temp_path(slot, ".surql.gz", run_tag)

        try:
            self.logger.info(
                "backup.exporting",
                operation="backup",
                slot=slot.value,
                namespace=credentials.namespace,
                database=credentials.database,
            )
            self.client.export(credentials, dump_path, timeout=self.config.get_timeout("export"))

            dump = validate_dump(dump_path, self.markers)
            self._compress(dump_path, staged_path)
            staged = validate_artifact(staged_path, self.markers)
            if staged.raw_size_bytes != dump.raw_size_bytes:
                raise ValidationError(
                    f"Compressed artifact holds {staged.raw_size_bytes} bytes, export had {dump.raw_size_bytes}"
                )

            checksum = calculate_checksum(staged_path)
            record = {
                "slot": slot.value,
                "backup_name": self.store.path(slot).name,
                "timestamp": self._now().isoformat(),
                "started_at": started_at.isoformat(),
                "size_bytes": staged_path.stat().st_size,
                "raw_size_bytes": dump.raw_size_bytes,
                "checksum_sha256": checksum,
                "validated": True,
                "duration_seconds": round(time.monotonic() - start, 3),
                "namespace": credentials.namespace,
                "database": credentials.database,
                "created_by": CREATED_BY,
                "version": RECORD_VERSION,
            }
            artifact = self.store.replace(slot, staged_path, record)
            return artifact, dump.raw_size_bytes

        finally:
            for leftover in (dump_path, staged_path):
                try:
                    leftover.unlink(missing_ok=True)
                except OSError as e:
                    self.logger.warning("backup.cleanup_failed", path=str(leftover), error=str(e))
