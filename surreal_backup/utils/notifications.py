"""Webhook Notification Manager for backup operations"""

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

SERVICE_NAME = "surrealdb-backup"


class NotificationManager:
    """Posts backup and restore outcomes to a webhook

    Delivery is best effort: a failed POST is logged and never fails the
    operation that triggered it.
    """

    def __init__(self, webhook_url: str | None = None, timeout: float = 10, client: httpx.Client | None = None):
        self.logger = logging.getLogger("NotificationManager")
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._client = client
        self.enabled = bool(webhook_url)

        if not self.enabled:
            self.logger.debug("Webhook notifications not configured")

    def send(self, event: str, title: str, message: str, level: str = "info", **fields: Any) -> bool:
        """Send a notification

        Args:
            event: Machine-readable event name, e.g. 'backup.success'
            title: Short human-readable title
            message: Notification body
            level: 'info', 'warning' or 'error'

        Returns:
            True if the webhook accepted the notification, False otherwise
        """
        if not self.enabled or not self.webhook_url:
            return False

        payload = {
            "service": SERVICE_NAME,
            "event": event,
            "level": level,
            "title": title,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **fields,
        }

        try:
            if self._client is not None:
                response = self._client.post(self.webhook_url, json=payload, timeout=self.timeout)
            else:
                response = httpx.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return True

        except httpx.HTTPError as e:
            self.logger.warning(f"Failed to send notification: {e}")
            return False

    def notify_backup_success(self, slot: str, size_bytes: int = 0, duration_seconds: float = 0) -> bool:
        title = "Backup Successful"
        message = f"{slot.capitalize()} backup completed"
        if size_bytes > 0:
            message += f" ({size_bytes / (1024 * 1024):.2f} MB in {duration_seconds:.1f}s)"

        return self.send(
            "backup.success", title, message, slot=slot, size_bytes=size_bytes, duration_seconds=duration_seconds
        )

    def notify_backup_failure(self, slot: str, error: str = "") -> bool:
        title = "Backup Failed"
        message = f"{slot.capitalize()} backup failed"
        if error:
            # Truncate long error messages
            error_short = error[:200] + "..." if len(error) > 200 else error
            message += f": {error_short}"

        return self.send("backup.failure", title, message, level="error", slot=slot)

    def notify_restore(self, slot: str, success: bool, detail: str = "") -> bool:
        if success:
            return self.send("restore.success", "Restore Complete", f"Restored {slot} backup. {detail}".strip(), slot=slot)
        return self.send(
            "restore.failure", "Restore Failed", f"Restore of {slot} backup failed: {detail}", level="error", slot=slot
        )
