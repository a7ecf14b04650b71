"""Restore Engine: verify a slot's artifact or replay it into SurrealDB"""

import gzip
import shutil
import time
import zlib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import structlog

from ..utils.notifications import NotificationManager
from .artifact_store import ArtifactStore, Slot
from .backup_engine import COPY_CHUNK_SIZE, create_client, create_gate, create_notifier, create_store
from .config_manager import ConfigManager
from .errors import (
    BackupError,
    ConnectivityError,
    NoBackupFoundError,
    RestoreApplyError,
    StorageError,
    UsageError,
    ValidationError,
)
from .keyvault import CredentialSet, KeyvaultGate
from .locking import SlotLock
from .surreal_client import SurrealClient
from .validation import DEFAULT_MARKERS, ValidationResult, calculate_checksum, validate_artifact

RESCUE_DIR_NAME = "rescue"


class RestoreMode(Enum):
    INTERACTIVE = "interactive"
    FORCE = "force"
    VERIFY = "verify"

    @classmethod
    def parse(cls, value: "str | RestoreMode") -> "RestoreMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UsageError(f"Invalid restore mode '{value}'") from None


@dataclass
class RestoreResult:
    """Typed outcome of one verify or restore invocation"""

    slot: str
    mode: str
    ok: bool
    applied: bool
    duration_seconds: float
    verification: ValidationResult | None = None
    cancelled: bool = False
    error: BackupError | None = None

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else (self.error.exit_code if self.error else 1)

    @property
    def message(self) -> str:
        if self.error:
            return f"Restore failed: {self.error.message}"
        if self.cancelled:
            return "Restore cancelled."
        if not self.applied:
            size = self.verification.raw_size_bytes if self.verification else 0
            return f"Backup verification successful (size: {size} bytes)"
        return f"Database restored from {self.slot} backup in {self.duration_seconds:.1f}s"


class RestoreEngine:
    """Verifies artifacts and applies them to the live database"""

    def __init__(
        self,
        config_manager: ConfigManager,
        client: SurrealClient | None = None,
        gate: KeyvaultGate | None = None,
        store: ArtifactStore | None = None,
        notifier: NotificationManager | None = None,
    ):
        self.config = config_manager
        self.client = client or create_client(config_manager)
        self.gate = gate or create_gate(config_manager)
        self.store = store or create_store(config_manager)
        self.notifier = notifier or create_notifier(config_manager)
        self.markers = tuple(self.config.get_setting("backup.validation_markers", list(DEFAULT_MARKERS)))
        self.safety_export = bool(self.config.get_setting("restore.safety_export", True))
        self.logger = structlog.get_logger("RestoreEngine")

    def warning_text(self, slot: Slot) -> str:
        return (
            "WARNING: This will replace all data in the SurrealDB database.\n"
            f"Backup file: {self.store.path(slot)}\n"
            f"Database: {self.client.endpoint}"
        )

    def verify(self, slot: "Slot | str") -> ValidationResult:
        """Check a slot's artifact without touching the database

        Raises:
            NoBackupFoundError: the slot has no artifact
            ValidationError: checksum mismatch, corrupt gzip or bad dump
        """
        slot = Slot.parse(slot)
        path = self.store.path(slot)
        if not path.is_file():
            raise NoBackupFoundError(slot.value, str(path))

        self.logger.info("restore.verifying", operation="verify", slot=slot.value, path=str(path))

        record = self.store.load_record(slot)
        expected = record.get("checksum_sha256") if record else None
        if expected:
            actual = calculate_checksum(path)
            if actual != expected:
                raise ValidationError(
                    f"Backup corrupted, checksum mismatch for {path.name}: expected {expected[:12]}, got {actual[:12]}"
                )

        result = validate_artifact(path, self.markers)
        self.logger.info(
            "restore.verified",
            operation="verify",
            slot=slot.value,
            status="success",
            file_size_bytes=result.raw_size_bytes,
            validation="passed",
        )
        return result

    def restore(
        self,
        slot: "Slot | str",
        mode: "RestoreMode | str" = RestoreMode.INTERACTIVE,
        confirm: Callable[[str], bool] | None = None,
    ) -> RestoreResult:
        """Verify, or verify and apply, a slot's artifact

        ``confirm`` receives the warning text in interactive mode and must
        return True for the restore to go ahead.
        """
        start = time.monotonic()
        slot_name, mode_name = str(slot), str(getattr(mode, "value", mode))
        verification: ValidationResult | None = None

        try:
            parsed_slot = Slot.parse(slot)
            parsed_mode = RestoreMode.parse(mode)
            slot_name, mode_name = parsed_slot.value, parsed_mode.value

            if parsed_mode is RestoreMode.INTERACTIVE and confirm is None:
                raise UsageError("Interactive restore needs a confirmation prompt; use force mode for automation")

            if parsed_mode is RestoreMode.VERIFY:
                verification = self.verify(parsed_slot)
                return RestoreResult(
                    slot=slot_name,
                    mode=mode_name,
                    ok=True,
                    applied=False,
                    duration_seconds=round(time.monotonic() - start, 3),
                    verification=verification,
                )

            self.logger.info("restore.started", operation="restore", slot=slot_name, mode=mode_name, status="started")

            # The prompt can stay open indefinitely, so it runs without the slot lock
            if parsed_mode is RestoreMode.INTERACTIVE:
                assert confirm is not None
                verification = self.verify(parsed_slot)
                if not confirm(self.warning_text(parsed_slot)):
                    self.logger.info("restore.cancelled", operation="restore", slot=slot_name)
                    return RestoreResult(
                        slot=slot_name,
                        mode=mode_name,
                        ok=True,
                        applied=False,
                        cancelled=True,
                        duration_seconds=round(time.monotonic() - start, 3),
                        verification=verification,
                    )

            self.store.init_storage()
            with SlotLock(self.store.backup_dir, slot_name, "restore"):
                # A backup may have replaced the artifact while the prompt was open
                verification = self.verify(parsed_slot)
                self._apply(parsed_slot)

        except BackupError as e:
            duration = round(time.monotonic() - start, 3)
            self.logger.error(
                "restore.failed",
                operation="verify" if mode_name == RestoreMode.VERIFY.value else "restore",
                slot=slot_name,
                mode=mode_name,
                status="failed",
                error=e.kind,
                error_message=e.message,
                duration_seconds=duration,
                validation="failed" if isinstance(e, ValidationError) else None,
                rolled_back=getattr(e, "rolled_back", None),
            )
            if mode_name != RestoreMode.VERIFY.value and not isinstance(e, UsageError):
                self.notifier.notify_restore(slot_name, False, e.message)
            return RestoreResult(
                slot=slot_name,
                mode=mode_name,
                ok=False,
                applied=False,
                duration_seconds=duration,
                verification=verification,
                error=e,
            )

        duration = round(time.monotonic() - start, 3)
        assert verification is not None
        self.logger.info(
            "restore.completed",
            operation="restore",
            slot=slot_name,
            mode=mode_name,
            status="success",
            file_size_bytes=verification.raw_size_bytes,
            duration_seconds=duration,
            validation="passed",
        )
        self.notifier.notify_restore(slot_name, True)
        return RestoreResult(
            slot=slot_name,
            mode=mode_name,
            ok=True,
            applied=True,
            duration_seconds=duration,
            verification=verification,
        )

    def _decompress(self, source: Path, target: Path) -> None:
        try:
            with gzip.open(source, "rb") as f_in, open(target, "wb") as f_out:
                shutil.copyfileobj(f_in, f_out, COPY_CHUNK_SIZE)
        except (EOFError, zlib.error) as e:
            raise ValidationError(f"Failed to decompress backup file: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to decompress backup file: {e}") from e

    def _apply(self, slot: Slot) -> None:
        """Replay the artifact, rolling back to a safety export if the import fails"""
        credentials = self.gate.read()
        self.client.health_check()

        tag = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        sql_path = self.store.temp_path(slot, ".restore.surql", tag)
        safety_path = self.store.temp_path(slot, ".pre_restore.surql", tag) if self.safety_export else None
        keep_safety = False

        try:
            if safety_path is not None:
                self.logger.info("restore.safety_export", operation="restore", slot=slot.value, path=str(safety_path))
                self.client.export(credentials, safety_path, timeout=self.config.get_timeout("export"))

            self._decompress(self.store.path(slot), sql_path)

            self.logger.info(
                "restore.importing",
                operation="restore",
                slot=slot.value,
                namespace=credentials.namespace,
                database=credentials.database,
            )
            try:
                self.client.import_(credentials, sql_path, timeout=self.config.get_timeout("import"))
            except ConnectivityError as e:
                if safety_path is None:
                    raise RestoreApplyError(
                        f"Import failed and no safety export was taken; database may be partially restored: {e.message}",
                        rolled_back=False,
                    ) from e
                keep_safety = not self._rollback(slot, credentials, safety_path)
                if keep_safety:
                    rescued = self._rescue(safety_path)
                    raise RestoreApplyError(
                        f"Import failed and rollback failed; pre-restore export kept at {rescued}: {e.message}",
                        rolled_back=False,
                        safety_export=str(rescued),
                    ) from e
                raise RestoreApplyError(
                    f"Import failed, database rolled back to its pre-restore state: {e.message}",
                    rolled_back=True,
                ) from e

        finally:
            sql_path.unlink(missing_ok=True)
            if safety_path is not None and not keep_safety:
                safety_path.unlink(missing_ok=True)

    def _rollback(self, slot: Slot, credentials: CredentialSet, safety_path: Path) -> bool:
        self.logger.warning("restore.rollback_started", operation="restore", slot=slot.value)
        try:
            self.client.reset_database(credentials)
            self.client.import_(credentials, safety_path, timeout=self.config.get_timeout("import"))
        except ConnectivityError as e:
            self.logger.error("restore.rollback_failed", operation="restore", slot=slot.value, error_message=e.message)
            return False
        self.logger.warning("restore.rolled_back", operation="restore", slot=slot.value)
        return True

    def _rescue(self, safety_path: Path) -> Path:
        """Move a pre-restore export out of the temp dir so cleanup keeps it"""
        rescue_dir = self.store.backup_dir / RESCUE_DIR_NAME
        rescue_dir.mkdir(parents=True, exist_ok=True)
        target = rescue_dir / safety_path.name
        shutil.move(str(safety_path), target)
        return target
