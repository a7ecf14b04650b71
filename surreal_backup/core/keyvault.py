"""Secret provider gate: wait for keyvault credential files

A Doppler sidecar writes one plaintext file per secret into the keyvault
mount. Nothing may talk to the database until all of them exist.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from .errors import SecretsUnavailableError

REQUIRED_FILES = ("username", "password", "namespace", "database")

DEFAULT_TIMEOUT = 60
DEFAULT_POLL_INTERVAL = 2

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CredentialSet:
    """Database credentials materialized by the secret provider"""

    username: str
    password: str = field(repr=False)
    namespace: str
    database: str


class KeyvaultGate:
    """Blocks until every required credential file is present"""

    def __init__(
        self,
        keyvault_dir: Path,
        timeout: float | None = DEFAULT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.keyvault_dir = Path(keyvault_dir)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def missing_files(self) -> list[str]:
        """Names of required credential files not present yet"""
        return [name for name in REQUIRED_FILES if not (self.keyvault_dir / name).is_file()]

    def is_ready(self) -> bool:
        return not self.missing_files()

    def wait(self) -> None:
        """Poll until all credential files exist

        A timeout of 0 or None waits forever.

        Raises:
            SecretsUnavailableError: if the timeout elapses first
        """
        deadline = self._clock() + self.timeout if self.timeout else None
        announced = False

        while True:
            missing = self.missing_files()
            if not missing:
                log.info("keyvault.ready", operation="keyvault", keyvault_dir=str(self.keyvault_dir))
                return

            if deadline is not None and self._clock() >= deadline:
                log.error(
                    "keyvault.timeout",
                    operation="keyvault",
                    missing=missing,
                    timeout_seconds=self.timeout,
                )
                raise SecretsUnavailableError(
                    f"Timed out after {self.timeout}s waiting for keyvault credentials "
                    f"in {self.keyvault_dir} (missing: {', '.join(missing)})"
                )

            if not announced:
                log.info("keyvault.waiting", operation="keyvault", missing=missing)
                announced = True
            self._sleep(self.poll_interval)

    def read(self) -> CredentialSet:
        """Wait for the keyvault, then read the credential set"""
        self.wait()

        values: dict[str, str] = {}
        for name in REQUIRED_FILES:
            try:
                values[name] = (self.keyvault_dir / name).read_text(encoding="utf-8").strip()
            except OSError as e:
                raise SecretsUnavailableError(f"Cannot read keyvault file '{name}': {e}") from e

        empty = [name for name in ("username", "namespace", "database") if not values[name]]
        if empty:
            raise SecretsUnavailableError(f"Keyvault credential files are empty: {', '.join(empty)}")

        return CredentialSet(**values)
