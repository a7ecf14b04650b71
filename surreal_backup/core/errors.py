"""Error taxonomy for backup and restore operations

Every failure a pipeline stage can report is a ``BackupError`` subclass
carrying the process exit code the CLI should use for it.
"""


class BackupError(Exception):
    """Base class for all expected backup/restore failures"""

    exit_code = 1
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str | int]:
        return {"error": self.kind, "message": self.message, "exit_code": self.exit_code}


class ConnectivityError(BackupError):
    """Database or secret provider unreachable"""

    exit_code = 1
    kind = "connectivity"


class ValidationError(BackupError):
    """Artifact or dump failed a structural check"""

    exit_code = 2
    kind = "validation"


class UsageError(BackupError):
    """Invalid slot name, conflicting flags or missing input"""

    exit_code = 3
    kind = "usage"


class NoBackupFoundError(UsageError):
    """No artifact exists for the requested slot"""

    kind = "no_backup"

    def __init__(self, slot: str, path: str | None = None):
        message = f"No backup found for slot '{slot}'"
        if path:
            message += f" ({path})"
        super().__init__(message)
        self.slot = slot


class SecretsUnavailableError(ConnectivityError):
    """Credential files did not appear in the keyvault in time"""

    exit_code = 4
    kind = "secrets_unavailable"


class StorageError(BackupError):
    """Local I/O failure: disk space, permissions, rename"""

    exit_code = 5
    kind = "storage"


class LockError(BackupError):
    """Another backup or restore holds the slot"""

    exit_code = 6
    kind = "locked"


class RestoreApplyError(BackupError):
    """Import into the live database failed after it had started"""

    exit_code = 7
    kind = "restore_apply"

    def __init__(self, message: str, rolled_back: bool, safety_export: str | None = None):
        super().__init__(message)
        self.rolled_back = rolled_back
        self.safety_export = safety_export
