"""Thin wrapper around the ``surreal`` CLI and the server health endpoint"""

import os
import subprocess
import time
from collections.abc import Callable
from pathlib import Path

import httpx
import structlog

from .errors import ConnectivityError
from .keyvault import CredentialSet

# Subprocess timeout constants (seconds)
EXPORT_TIMEOUT = 3600  # 1 hour for database exports
IMPORT_TIMEOUT = 7200  # 2 hours for database imports
SQL_TIMEOUT = 600

DEFAULT_ENDPOINT = "http://core-surrealdb:8000"
STDERR_TAIL_CHARS = 500


class SurrealClient:
    """Runs exports/imports against one SurrealDB endpoint"""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        binary: str = "surreal",
        health_retries: int = 3,
        health_retry_delay: float = 5,
        health_timeout: float = 10,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.binary = binary
        self.health_retries = max(1, health_retries)
        self.health_retry_delay = health_retry_delay
        self.health_timeout = health_timeout
        self._sleep = sleep
        self.logger = structlog.get_logger("SurrealClient")

    def health_check(self) -> None:
        """Poll ``<endpoint>/health`` with a few retries

        Raises:
            ConnectivityError: if every attempt fails
        """
        last_error = ""
        for attempt in range(1, self.health_retries + 1):
            try:
                response = httpx.get(f"{self.endpoint}/health", timeout=self.health_timeout)
                if response.status_code == 200:
                    self.logger.info("surrealdb.health_ok", operation="health_check", attempt=attempt)
                    return
                last_error = f"HTTP {response.status_code}"
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__

            self.logger.warning(
                "surrealdb.health_failed", operation="health_check", attempt=attempt, error=last_error
            )
            if attempt < self.health_retries:
                self._sleep(self.health_retry_delay)

        raise ConnectivityError(
            f"SurrealDB health check failed after {self.health_retries} attempts at {self.endpoint}: {last_error}"
        )

    def _base_args(self, command: str, credentials: CredentialSet) -> list[str]:
        return [
            self.binary,
            command,
            "--endpoint",
            self.endpoint,
            "--username",
            credentials.username,
            "--namespace",
            credentials.namespace,
            "--database",
            credentials.database,
        ]

    def _run(
        self, args: list[str], credentials: CredentialSet, timeout: int, operation: str, stdin: str | None = None
    ) -> None:
        # Password goes through the environment so it never shows up in the process list
        env = {**os.environ, "SURREAL_PASS": credentials.password}
        try:
            result = subprocess.run(args, input=stdin, capture_output=True, text=True, timeout=timeout, env=env)
        except FileNotFoundError as e:
            raise ConnectivityError(f"surreal CLI not found: {self.binary}") from e
        except subprocess.TimeoutExpired as e:
            raise ConnectivityError(f"surreal {operation} timed out after {timeout}s") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            self.logger.debug("surrealdb.stderr", operation=operation, stderr=stderr)
            raise ConnectivityError(
                f"surreal {operation} failed with exit code {result.returncode}: {stderr[-STDERR_TAIL_CHARS:]}"
            )

    def export(self, credentials: CredentialSet, target: Path, timeout: int = EXPORT_TIMEOUT) -> None:
        """Write a full logical dump of the namespace/database to ``target``"""
        args = self._base_args("export", credentials) + [str(target)]
        self._run(args, credentials, timeout, "export")

    def import_(self, credentials: CredentialSet, source: Path, timeout: int = IMPORT_TIMEOUT) -> None:
        """Replay a logical dump into the namespace/database"""
        args = self._base_args("import", credentials) + [str(source)]
        self._run(args, credentials, timeout, "import")

    def sql(self, credentials: CredentialSet, statements: str, timeout: int = SQL_TIMEOUT) -> None:
        """Run SurrealQL statements through ``surreal sql`` on stdin"""
        args = self._base_args("sql", credentials) + ["--hide-welcome"]
        self._run(args, credentials, timeout, "sql", stdin=statements)

    def reset_database(self, credentials: CredentialSet, timeout: int = SQL_TIMEOUT) -> None:
        """Drop and recreate the database so it is empty

        An import never removes records, so a rollback has to start from
        an empty database.
        """
        name = "`" + credentials.database.replace("`", "\\`") + "`"
        self.logger.warning("surrealdb.reset_database", operation="restore", database=credentials.database)
        self.sql(credentials, f"REMOVE DATABASE {name};\nDEFINE DATABASE {name};\n", timeout)
