"""Backup executor: export, validate, compress and atomically replace a slot."""

import gzip
import json

import pytest

from surreal_backup.core.artifact_store import Slot
from surreal_backup.core.errors import LockError, SecretsUnavailableError, ValidationError
from surreal_backup.core.locking import SlotLock
from surreal_backup.core.validation import calculate_checksum

from .conftest import DUMP


def _canonical_files(store):
    return sorted(p.name for p in store.backup_dir.glob("*.surql.gz"))


def test_nightly_backup_writes_validated_artifact(backup_engine, store, client):
    result = backup_engine.run("nightly")

    assert result.ok
    assert result.exit_code == 0
    path = store.path(Slot.NIGHTLY)
    assert result.artifact.path == path
    assert gzip.decompress(path.read_bytes()).decode() == DUMP
    assert result.raw_size_bytes == len(DUMP.encode())
    assert client.calls == ["health_check", "export"]


def test_status_record_describes_artifact(backup_engine, store):
    backup_engine.run(Slot.WEEKLY)

    record = json.loads(store.record_path(Slot.WEEKLY).read_text())
    path = store.path(Slot.WEEKLY)
    assert record["slot"] == "weekly"
    assert record["backup_name"] == "weekly_backup.surql.gz"
    assert record["size_bytes"] == path.stat().st_size
    assert record["checksum_sha256"] == calculate_checksum(path)
    assert record["namespace"] == "app"
    assert record["database"] == "main"
    assert record["validated"] is True

    meta = store.metadata(Slot.WEEKLY)
    assert meta.validated
    assert meta.checksum_sha256 == record["checksum_sha256"]


def test_repeated_runs_keep_exactly_one_artifact(backup_engine, store):
    for _ in range(3):
        assert backup_engine.run("nightly").ok

    assert _canonical_files(store) == ["nightly_backup.surql.gz"]
    assert store.artifacts() == [store.path(Slot.NIGHTLY)]
    assert list(store.temp_dir.iterdir()) == []


def test_store_never_holds_more_than_two_artifacts(backup_engine, store):
    backup_engine.run("nightly")
    backup_engine.run("weekly")
    backup_engine.run("nightly")

    assert _canonical_files(store) == ["nightly_backup.surql.gz", "weekly_backup.surql.gz"]


def test_empty_export_keeps_previous_artifact(backup_engine, store, client):
    assert backup_engine.run("nightly").ok
    before = store.path(Slot.NIGHTLY).read_bytes()

    client.dump = ""
    result = backup_engine.run("nightly")

    assert not result.ok
    assert isinstance(result.error, ValidationError)
    assert result.exit_code == 2
    assert store.path(Slot.NIGHTLY).read_bytes() == before
    assert list(store.temp_dir.iterdir()) == []


def test_export_without_surrealql_markers_is_rejected(backup_engine, store, client):
    client.dump = "<html>502 Bad Gateway</html>\n"

    result = backup_engine.run("nightly")

    assert result.exit_code == 2
    assert not store.path(Slot.NIGHTLY).exists()


def test_export_failure_keeps_previous_artifact(backup_engine, store, client):
    backup_engine.run("weekly")
    before = store.path(Slot.WEEKLY).read_bytes()

    client.fail_export = True
    result = backup_engine.run("weekly")

    assert result.exit_code == 1
    assert "export failed" in result.message
    assert store.path(Slot.WEEKLY).read_bytes() == before


def test_unreachable_database_skips_export(backup_engine, client):
    client.healthy = False

    result = backup_engine.run("nightly")

    assert result.exit_code == 1
    assert "export" not in client.calls


def test_missing_credentials_fail_before_database_contact(backup_engine, keyvault_dir, client):
    (keyvault_dir / "password").unlink()
    backup_engine.gate.timeout = 0.05

    result = backup_engine.run("nightly")

    assert isinstance(result.error, SecretsUnavailableError)
    assert result.exit_code == 4
    assert client.calls == []


def test_busy_slot_is_refused(backup_engine, store, client):
    store.init_storage()
    with SlotLock(store.backup_dir, "nightly", "restore"):
        result = backup_engine.run("nightly")

    assert isinstance(result.error, LockError)
    assert result.exit_code == 6
    assert client.calls == []


def test_lock_is_per_slot(backup_engine, store):
    store.init_storage()
    with SlotLock(store.backup_dir, "nightly"):
        assert backup_engine.run("weekly").ok


def test_unknown_slot_is_usage_error(backup_engine, client):
    result = backup_engine.run("monthly")

    assert result.exit_code == 3
    assert client.calls == []


def test_insufficient_space_is_storage_error(backup_engine, monkeypatch):
    monkeypatch.setitem(backup_engine.config.settings["storage"], "min_free_space_mb", 1024**3)

    result = backup_engine.run("nightly")

    assert result.exit_code == 5
    assert "Insufficient disk space" in result.message


@pytest.mark.parametrize("level", [1, 9])
def test_compression_level_is_configurable(backup_engine, store, level):
    backup_engine.compression_level = level

    assert backup_engine.run("nightly").ok
    assert gzip.decompress(store.path(Slot.NIGHTLY).read_bytes()).decode() == DUMP
