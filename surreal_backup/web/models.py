"""Response models for the health endpoint."""

from typing import Literal

from pydantic import BaseModel


class BackupFileStatus(BaseModel):
    """Metadata of one slot's artifact."""

    exists: bool
    size: str | None = None
    modified: str | None = None


class HealthResponse(BaseModel):
    """Backup freshness as reported by GET /health."""

    status: Literal["healthy", "degraded"]
    service: str
    timestamp: str
    expected_slot: str
    last_backup: str | None = None
    backup_files: dict[str, BackupFileStatus]
