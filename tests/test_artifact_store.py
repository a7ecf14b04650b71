"""Two-slot store: canonical paths, status records and temp cleanup."""

import json
import os

import pytest

from surreal_backup.core.artifact_store import ArtifactStore, Slot
from surreal_backup.core.errors import UsageError


@pytest.fixture
def empty_store(tmp_path):
    store = ArtifactStore(tmp_path / "backups")
    store.init_storage()
    return store


def test_slot_parse():
    assert Slot.parse(" Nightly ") is Slot.NIGHTLY
    assert Slot.parse(Slot.WEEKLY) is Slot.WEEKLY
    with pytest.raises(UsageError, match="monthly"):
        Slot.parse("monthly")


def test_canonical_paths(empty_store):
    assert empty_store.path(Slot.NIGHTLY).name == "nightly_backup.surql.gz"
    assert empty_store.path(Slot.WEEKLY).name == "weekly_backup.surql.gz"
    assert empty_store.record_path(Slot.WEEKLY).name == "weekly_backup.json"
    assert empty_store.temp_path(Slot.NIGHTLY, ".surql", "run1") == empty_store.temp_dir / "nightly_run1.surql"


def test_metadata_of_missing_artifact(empty_store):
    meta = empty_store.metadata(Slot.NIGHTLY)

    assert not meta.exists
    assert meta.to_dict()["modified"] is None
    assert empty_store.artifacts() == []


def test_replace_moves_staged_file_and_writes_record(empty_store):
    staged = empty_store.temp_path(Slot.NIGHTLY, ".surql.gz", "run1")
    staged.write_bytes(b"new artifact")
    record = {"size_bytes": 12, "checksum_sha256": "abc", "validated": True, "timestamp": "2026-10-14T02:00:05+00:00"}

    meta = empty_store.replace(Slot.NIGHTLY, staged, record)

    assert not staged.exists()
    assert empty_store.path(Slot.NIGHTLY).read_bytes() == b"new artifact"
    assert oct(os.stat(empty_store.path(Slot.NIGHTLY)).st_mode & 0o777) == "0o600"
    assert json.loads(empty_store.record_path(Slot.NIGHTLY).read_text()) == record
    assert meta.validated
    assert meta.checksum_sha256 == "abc"
    assert meta.created_at.isoformat() == "2026-10-14T02:00:05+00:00"


def test_stale_record_is_ignored(empty_store):
    empty_store.path(Slot.WEEKLY).write_bytes(b"hand copied file")
    empty_store.record_path(Slot.WEEKLY).write_text(json.dumps({"size_bytes": 1, "checksum_sha256": "abc"}))

    meta = empty_store.metadata(Slot.WEEKLY)

    assert meta.exists
    assert meta.checksum_sha256 is None
    assert meta.created_at is None


def test_corrupt_record_is_ignored(empty_store):
    empty_store.record_path(Slot.NIGHTLY).write_text("{not json")

    assert empty_store.load_record(Slot.NIGHTLY) is None


def test_clean_temp_per_slot(empty_store):
    empty_store.temp_path(Slot.NIGHTLY, ".surql", "a").write_text("x")
    empty_store.temp_path(Slot.WEEKLY, ".surql", "b").write_text("x")

    assert empty_store.clean_temp(Slot.NIGHTLY) == 1
    assert [p.name for p in empty_store.temp_dir.iterdir()] == ["weekly_b.surql"]
    assert empty_store.clean_temp() == 1
