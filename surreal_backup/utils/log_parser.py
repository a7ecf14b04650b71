"""Reader for the JSON-lines backup log"""

import json
import logging
from collections import deque
from pathlib import Path
from typing import Any

MAX_PARSE_LINES = 50000


class BackupLogParser:
    """Pulls recent structured records out of backup.log"""

    def __init__(self, log_file: Path):
        self.log_file = Path(log_file)

    def parse_log_line(self, line: str) -> dict[str, Any] | None:
        """Parse a single log line; None for blank or non-JSON lines"""
        line = line.strip()
        if not line or not line.startswith("{"):
            return None
        try:
            record = json.loads(line)
        except ValueError:
            return None
        return record if isinstance(record, dict) else None

    def read_records(
        self,
        limit: int = 20,
        operation: str | None = None,
        slot: str | None = None,
        level: str | None = None,
    ) -> list[dict[str, Any]]:
        """Latest ``limit`` records, oldest first, after filtering"""
        if not self.log_file.exists():
            return []

        try:
            with open(self.log_file, encoding="utf-8", errors="replace") as f:
                # Only the newest lines are parsed
                tail = deque(f, maxlen=MAX_PARSE_LINES)
        except OSError as e:
            logging.warning(f"Could not read log file {self.log_file}: {e}")
            return []

        matches: deque[dict[str, Any]] = deque(maxlen=max(limit, 1))
        for line in tail:
            record = self.parse_log_line(line)
            if record is None:
                continue
            if operation and record.get("operation") != operation:
                continue
            if slot and record.get("slot") != slot:
                continue
            if level and str(record.get("level", "")).lower() != level.lower():
                continue
            matches.append(record)

        return list(matches)

    def last_run(self, slot: str) -> dict[str, Any] | None:
        """Final record of the most recent backup run for a slot"""
        runs = [
            r
            for r in self.read_records(limit=MAX_PARSE_LINES, operation="backup", slot=slot)
            if r.get("status") in ("success", "failed")
        ]
        return runs[-1] if runs else None
