"""Backup scheduling: in-process cron triggers and host crontab entries"""

import logging
import re
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.util import astimezone
from tzlocal import get_localzone

from ..core.artifact_store import Slot

if TYPE_CHECKING:
    from ..core.backup_engine import BackupEngine
    from ..core.config_manager import ConfigManager

DEFAULT_SCHEDULES = {Slot.NIGHTLY: "0 2 * * *", Slot.WEEKLY: "0 3 * * 0"}
MISFIRE_GRACE_SECONDS = 300
CRON_MARKER = "surreal-backup"

_CRON_LINE = re.compile(r"^([\d\*\/\-,]+\s+){5}(.+)$")
_RUN_SLOT = re.compile(r"\bbackup run (nightly|weekly)\b")

_DAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def _crontab_day_of_week(field: str) -> str:
    """Translate crontab weekday numbers (0/7 = Sunday) to names

    APScheduler numbers weekdays from Monday, so numeric crontab values
    have to be converted before they reach CronTrigger.
    """

    def name(token: str) -> str:
        return _DAY_NAMES[int(token)] if token.isdigit() and 0 <= int(token) <= 7 else token

    parts = []
    for part in field.split(","):
        step = ""
        if "/" in part:
            part, step = part.split("/", 1)
            step = f"/{step}"
        if "-" in part:
            start, end = part.split("-", 1)
            part = f"{name(start)}-{name(end)}"
        else:
            part = name(part)
        parts.append(part + step)
    return ",".join(parts)


def crontab_trigger(expr: str, timezone: Any = None) -> CronTrigger:
    """CronTrigger for a standard 5-field crontab expression"""
    values = expr.split()
    if len(values) != 5:
        raise ValueError(f"Wrong number of fields in cron expression '{expr}'; got {len(values)}, expected 5")

    minute, hour, day, month, day_of_week = values
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_crontab_day_of_week(day_of_week),
        timezone=timezone,
    )


@dataclass(frozen=True)
class ScheduleEntry:
    """One cron expression bound to one slot"""

    cron: str
    slot: Slot


def schedule_entries(config: "ConfigManager") -> list[ScheduleEntry]:
    return [ScheduleEntry(cron, Slot(name)) for name, cron in config.get_schedules().items()]


def schedule_timezone(config: "ConfigManager") -> tzinfo:
    """Zone the cron entries are evaluated in; the host zone when unset

    The scheduler and the health reporter must both use this so they agree
    on when each slot was last due.
    """
    name = config.get_setting("schedule.timezone")
    return astimezone(name) if name else get_localzone()


class BackupScheduler:
    """Fires BackupEngine runs on the configured cron entries

    No catch-up: a run missed by more than the grace period is skipped and
    the next tick is the retry.
    """

    def __init__(self, backup_engine: "BackupEngine", entries: list[ScheduleEntry], timezone: Any = None):
        self.backup_engine = backup_engine
        self.entries = entries
        self.timezone = timezone
        self.logger = logging.getLogger("BackupScheduler")
        self._scheduler: BlockingScheduler | None = None

    def run_slot(self, slot: Slot) -> bool:
        """Job body: run one backup and report whether it succeeded"""
        self.logger.info(f"Scheduled {slot.value} backup triggered")
        result = self.backup_engine.run(slot)
        if result.ok:
            self.logger.info(f"Scheduled {slot.value} backup finished: {result.message}")
        else:
            self.logger.error(f"Scheduled {slot.value} backup failed (exit {result.exit_code}): {result.message}")
        return result.ok

    def build(self) -> BlockingScheduler:
        scheduler = BlockingScheduler(timezone=self.timezone) if self.timezone else BlockingScheduler()
        for entry in self.entries:
            scheduler.add_job(
                self.run_slot,
                trigger=crontab_trigger(entry.cron, self.timezone),
                args=[entry.slot],
                id=f"{entry.slot.value}_backup",
                name=f"{entry.slot.value.capitalize()} backup ({entry.cron})",
                coalesce=True,
                max_instances=1,
                misfire_grace_time=MISFIRE_GRACE_SECONDS,
                replace_existing=True,
            )
        self._scheduler = scheduler
        return scheduler

    def next_run_times(self, now: datetime | None = None) -> dict[str, datetime | None]:
        """Next fire time per slot, computed from the triggers"""
        times: dict[str, datetime | None] = {}
        for entry in self.entries:
            trigger = crontab_trigger(entry.cron, self.timezone)
            start = now or datetime.now(trigger.timezone)
            times[entry.slot.value] = trigger.get_next_fire_time(None, start)
        return times

    def start(self) -> None:
        """Block running the schedule until shutdown() or a signal"""
        scheduler = self._scheduler or self.build()
        for slot, when in self.next_run_times().items():
            self.logger.info(f"Next {slot} backup at {when.isoformat() if when else 'never'}")
        scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)


class CrontabManager:
    """Host crontab entries for installs without a long-running scheduler

    Every entry this tool writes is a ``backup run <slot>`` command line
    preceded by a ``# surreal-backup <slot>: ...`` tag line. Entries are
    found by slot, so reinstalling after the command path changes still
    recognizes the old line.
    """

    def read_lines(self) -> list[str]:
        try:
            result = subprocess.run(["crontab", "-l"], capture_output=True, text=True, timeout=30)
        except (OSError, subprocess.SubprocessError) as e:
            logging.warning(f"Cannot read crontab: {e}")
            return []
        # crontab -l exits non-zero when the user has no crontab yet
        return result.stdout.splitlines() if result.returncode == 0 else []

    def write_lines(self, lines: list[str]) -> tuple[bool, str]:
        try:
            result = subprocess.run(
                ["crontab", "-"], input="\n".join(lines) + "\n", capture_output=True, text=True, timeout=30
            )
        except (OSError, subprocess.SubprocessError) as e:
            return False, f"Cannot write crontab: {e}"

        if result.returncode != 0:
            return False, f"crontab rejected the update: {result.stderr.strip()}"
        return True, "Crontab updated"

    @staticmethod
    def entry_slot(line: str) -> Slot | None:
        """Slot a crontab line backs up, or None if it is not one of ours"""
        line = line.strip()
        if not line or line.startswith("#"):
            return None
        if CRON_MARKER not in line and "surreal_backup" not in line:
            return None
        match = _RUN_SLOT.search(line)
        return Slot(match.group(1)) if match else None

    @staticmethod
    def tag_line(entry: ScheduleEntry, human_readable: str) -> str:
        return f"# {CRON_MARKER} {entry.slot.value}: {human_readable}"

    def add_slot_entry(self, entry: ScheduleEntry, config_file: str | None = None) -> tuple[bool, str]:
        """Append the crontab line for one slot unless that slot already has one"""
        lines = self.read_lines()
        if any(self.entry_slot(line) is entry.slot for line in lines):
            return False, f"A {entry.slot.value} backup entry is already installed"

        lines.append(self.tag_line(entry, self.parse_cron_schedule(entry.cron)))
        lines.append(f"{entry.cron} {self.generate_backup_command(entry.slot, config_file)}")
        return self.write_lines(lines)

    def remove_slot_entries(self, slot: Slot | None = None) -> tuple[bool, str]:
        """Drop the entries (and their tag lines) for one slot, or for both"""
        lines = self.read_lines()
        kept: list[str] = []
        removed = 0

        for line in lines:
            found = self.entry_slot(line)
            if found is not None and (slot is None or found is slot):
                if kept and kept[-1].startswith(f"# {CRON_MARKER} {found.value}:"):
                    kept.pop()
                removed += 1
                continue
            kept.append(line)

        target = f"{slot.value} " if slot else ""
        if removed == 0:
            return False, f"No {target}backup entries installed"

        ok, msg = self.write_lines(kept)
        return (True, f"Removed {removed} {target}backup entr{'y' if removed == 1 else 'ies'}") if ok else (False, msg)

    def list_backup_schedules(self) -> list[dict[str, str]]:
        """Installed entries with their slot and a readable schedule"""
        lines = self.read_lines()
        schedules = []

        for i, line in enumerate(lines):
            slot = self.entry_slot(line)
            if slot is None or not _CRON_LINE.match(line.strip()):
                continue

            parts = line.split(None, 5)
            schedule = " ".join(parts[:5])
            previous = lines[i - 1].strip() if i > 0 else ""
            schedules.append(
                {
                    "slot": slot.value,
                    "schedule": schedule,
                    "command": parts[5],
                    "comment": previous.lstrip("#").strip() if previous.startswith("#") else "No description",
                    "human_readable": self.parse_cron_schedule(schedule),
                }
            )

        return schedules

    def parse_cron_schedule(self, schedule: str) -> str:
        """Convert cron schedule to human-readable format"""
        parts = schedule.split()
        if len(parts) != 5:
            return "Invalid schedule"

        minute, hour, day, month, weekday = parts
        days = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

        if minute.isdigit() and hour.isdigit() and day == "*" and month == "*":
            at = f"{int(hour):02d}:{int(minute):02d}"
            if weekday == "*":
                return f"Daily at {at}"
            if weekday.isdigit() and 0 <= int(weekday) <= 7:
                return f"Weekly on {days[int(weekday)]} at {at}"

        desc = []
        if minute == "*":
            desc.append("Every minute")
        elif "/" in minute:
            desc.append(f"Every {minute.split('/')[1]} minutes")
        else:
            desc.append(f"At minute {minute}")

        if hour != "*":
            if "/" in hour:
                desc.append(f"every {hour.split('/')[1]} hours")
            else:
                desc.append(f"at hour {hour}")
        if day != "*":
            desc.append(f"on day {day}")
        if month != "*":
            desc.append(f"in month {month}")
        if weekday != "*":
            if weekday.isdigit() and 0 <= int(weekday) <= 7:
                desc.append(f"on {days[int(weekday)][:3]}")
            else:
                desc.append(f"on weekdays {weekday}")

        return ", ".join(desc)

    def generate_backup_command(self, slot: Slot, config_file: str | None = None) -> str:
        """Command line cron should run for one slot"""
        executable = shutil.which(CRON_MARKER)
        base_cmd = shlex.quote(executable) if executable else f"{shlex.quote(sys.executable)} -m surreal_backup"
        if config_file:
            base_cmd += f" --config {shlex.quote(config_file)}"
        return f"{base_cmd} backup run {slot.value} > /dev/null 2>&1"

    def install_default_schedules(
        self, entries: list[ScheduleEntry], config_file: str | None = None
    ) -> tuple[bool, str]:
        """Install one crontab line per slot, leaving slots that already have one"""
        added = 0
        errors = []

        for entry in entries:
            success, msg = self.add_slot_entry(entry, config_file)
            if success:
                added += 1
            elif "already installed" not in msg:
                errors.append(msg)

        if errors:
            return False, f"Installed {added} backup schedule(s) with errors: {'; '.join(errors)}"
        return True, f"Installed {added} backup schedule(s)"
