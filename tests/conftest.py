"""Shared fixtures: a throwaway backup tree and an in-memory SurrealDB."""

from pathlib import Path

import pytest
import yaml

from surreal_backup.core.backup_engine import BackupEngine, create_store
from surreal_backup.core.config_manager import ConfigManager
from surreal_backup.core.errors import ConnectivityError
from surreal_backup.core.keyvault import KeyvaultGate
from surreal_backup.core.restore_engine import RestoreEngine
from surreal_backup.utils.notifications import NotificationManager

DUMP = (
    "-- ------------------------------\n"
    "-- OPTION\n"
    "-- ------------------------------\n"
    "OPTION IMPORT;\n\n"
    "DEFINE TABLE person TYPE ANY SCHEMALESS PERMISSIONS NONE;\n"
    "INSERT [ { id: person:ada, name: 'Ada' }, { id: person:grace, name: 'Grace' } ];\n"
)

CREDENTIALS = {"username": "root", "password": "s3cret", "namespace": "app", "database": "main"}


class FakeSurrealClient:
    """Stands in for the surreal CLI; records every call it receives"""

    endpoint = "http://surrealdb.test:8000"

    def __init__(self, dump: str = DUMP):
        self.dump = dump
        self.calls: list[str] = []
        self.imported: list[str] = []
        # Dumps written into the database since the last reset, partial ones included
        self.applied: list[str] = []
        self.healthy = True
        self.fail_export = False
        self.import_failures = 0
        self.fail_reset = False

    def health_check(self) -> None:
        self.calls.append("health_check")
        if not self.healthy:
            raise ConnectivityError(f"SurrealDB health check failed after 3 attempts at {self.endpoint}")

    def export(self, credentials, target: Path, timeout: int = 3600) -> None:
        self.calls.append("export")
        if self.fail_export:
            raise ConnectivityError("surreal export failed with exit code 1: connection refused")
        Path(target).write_text(self.dump, encoding="utf-8")

    def import_(self, credentials, source: Path, timeout: int = 7200) -> None:
        self.calls.append("import")
        content = Path(source).read_text(encoding="utf-8")
        self.imported.append(content)
        self.applied.append(content)
        if self.import_failures:
            self.import_failures -= 1
            raise ConnectivityError("surreal import failed with exit code 1: parse error")

    def reset_database(self, credentials, timeout: int = 600) -> None:
        self.calls.append("reset")
        if self.fail_reset:
            raise ConnectivityError("surreal sql failed with exit code 1: permission denied")
        self.applied.clear()


@pytest.fixture
def keyvault_dir(tmp_path):
    directory = tmp_path / "keyvault"
    directory.mkdir()
    for name, value in CREDENTIALS.items():
        (directory / name).write_text(f"{value}\n")
    return directory


@pytest.fixture
def config_file(tmp_path, keyvault_dir):
    settings = {
        "storage": {"backup_dir": str(tmp_path / "backups"), "min_free_space_mb": 0},
        "keyvault": {
            "dir": str(keyvault_dir),
            "shared_dir": str(tmp_path / "shared"),
            "timeout": 1,
            "poll_interval": 0.01,
        },
        "logging": {"dir": str(tmp_path / "logs"), "console": False},
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump(settings))
    return path


@pytest.fixture
def config(config_file):
    return ConfigManager(config_file, environ={})


@pytest.fixture
def store(config):
    return create_store(config)


@pytest.fixture
def client():
    return FakeSurrealClient()


@pytest.fixture
def gate(keyvault_dir):
    return KeyvaultGate(keyvault_dir, timeout=1, poll_interval=0.01)


@pytest.fixture
def notifier():
    return NotificationManager(None)


@pytest.fixture
def backup_engine(config, client, gate, store, notifier):
    return BackupEngine(config, client=client, gate=gate, store=store, notifier=notifier)


@pytest.fixture
def restore_engine(config, client, gate, store, notifier):
    return RestoreEngine(config, client=client, gate=gate, store=store, notifier=notifier)
