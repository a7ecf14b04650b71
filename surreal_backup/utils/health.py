"""Backup freshness report derived from the artifact store"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from ..core.artifact_store import ArtifactMetadata, ArtifactStore, Slot
from ..core.config_manager import ConfigManager
from .scheduler import DEFAULT_SCHEDULES, crontab_trigger, schedule_timezone

SERVICE_NAME = "surrealdb-backup"
HEALTHY = "healthy"
DEGRADED = "degraded"

DEFAULT_MAX_AGE = {
    Slot.NIGHTLY: timedelta(hours=26),
    Slot.WEEKLY: timedelta(days=8),
}
# How far back to look for the previous fire time of a schedule
LOOKBACK = timedelta(days=35)


def human_size(size_bytes: int) -> str:
    """Format a byte count as e.g. '512 B', '1.5 KB', '2.3 GB'"""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def previous_fire_time(cron: str, now: datetime, tz: Any = timezone.utc) -> datetime | None:
    """Most recent time at or before ``now`` that a crontab expression fired"""
    trigger = crontab_trigger(cron, tz)
    candidate = trigger.get_next_fire_time(None, now - LOOKBACK)
    previous = None
    while candidate is not None and candidate <= now:
        previous = candidate
        candidate = trigger.get_next_fire_time(candidate, candidate + timedelta(seconds=1))
    return previous


class HealthReporter:
    """Computes the HealthStatus body on every call; nothing is cached"""

    def __init__(
        self,
        store: ArtifactStore,
        schedules: dict[Slot, str] | None = None,
        max_age: dict[Slot, timedelta] | None = None,
        now: Callable[[], datetime] | None = None,
        tz: Any = timezone.utc,
    ):
        self.store = store
        self.schedules = schedules or dict(DEFAULT_SCHEDULES)
        self.max_age = {**DEFAULT_MAX_AGE, **(max_age or {})}
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.tz = tz

    @classmethod
    def from_config(cls, config: ConfigManager, store: ArtifactStore | None = None) -> "HealthReporter":
        if store is None:
            paths = config.get_storage_paths()
            store = ArtifactStore(paths["backup"], paths["temp"])
        schedules = {Slot(name): cron for name, cron in config.get_schedules().items()}
        max_age = {
            Slot.NIGHTLY: timedelta(hours=float(config.get_setting("health.nightly_max_age_hours", 26))),
            Slot.WEEKLY: timedelta(hours=float(config.get_setting("health.weekly_max_age_hours", 192))),
        }
        return cls(store, schedules, max_age=max_age, tz=schedule_timezone(config))

    def expected_slot(self, now: datetime) -> Slot:
        """The slot whose schedule fired most recently"""
        latest: tuple[datetime, Slot] | None = None
        for slot, cron in self.schedules.items():
            fired = previous_fire_time(cron, now, self.tz)
            if fired is not None and (latest is None or fired > latest[0]):
                latest = (fired, slot)
        return latest[1] if latest else Slot.NIGHTLY

    def is_fresh(self, meta: ArtifactMetadata, now: datetime) -> bool:
        if not meta.exists or meta.modified_at is None:
            return False
        return now - meta.modified_at <= self.max_age[meta.slot]

    def status(self) -> dict[str, Any]:
        now = self._now()
        metadata = self.store.all_metadata()

        expected = self.expected_slot(now)
        state = HEALTHY if self.is_fresh(metadata[expected], now) else DEGRADED

        stamps = [m.created_at or m.modified_at for m in metadata.values() if m.exists]
        last_backup = max((s for s in stamps if s is not None), default=None)

        return {
            "status": state,
            "service": SERVICE_NAME,
            "timestamp": now.isoformat(),
            "expected_slot": expected.value,
            "last_backup": last_backup.isoformat() if last_backup else None,
            "backup_files": {
                slot.value: {
                    "exists": meta.exists,
                    "size": human_size(meta.size_bytes) if meta.exists else None,
                    "modified": meta.modified_at.isoformat() if meta.modified_at else None,
                }
                for slot, meta in metadata.items()
            },
        }
