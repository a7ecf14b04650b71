"""Per-slot cross-process lock based on flock"""

import fcntl
import os
from pathlib import Path
from types import TracebackType

from .errors import LockError, StorageError


class SlotLock:
    """Non-blocking exclusive lock on ``<backup_dir>/.<slot>.lock``

    Scheduled runs, manual runs and restores of the same slot exclude each
    other. The lock is released when the holding process exits, even on a
    crash, so a stale lock file on disk is harmless.
    """

    def __init__(self, backup_dir: Path, slot_name: str, operation: str = "backup"):
        self.path = Path(backup_dir) / f".{slot_name}.lock"
        self.slot_name = slot_name
        self.operation = operation
        self._fd: int | None = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        try:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise StorageError(f"Cannot open lock file {self.path}: {e}") from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            holder = self._read_holder(fd)
            os.close(fd)
            raise LockError(
                f"Slot '{self.slot_name}' is busy ({holder or 'another process'}); try again later"
            ) from None

        os.ftruncate(fd, 0)
        os.write(fd, f"{self.operation} pid={os.getpid()}\n".encode())
        self._fd = fd

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    @staticmethod
    def _read_holder(fd: int) -> str:
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            return os.read(fd, 128).decode(errors="replace").strip()
        except OSError:
            return ""

    def __enter__(self) -> "SlotLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
