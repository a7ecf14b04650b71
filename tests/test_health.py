"""Health reporter: freshness of the slot whose schedule fired last."""

import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from surreal_backup.core.artifact_store import Slot
from surreal_backup.utils.health import DEGRADED, HEALTHY, HealthReporter, human_size, previous_fire_time
from surreal_backup.web.health_server import create_app

WEDNESDAY_NOON = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)
SUNDAY_0400 = datetime(2026, 10, 18, 4, 0, tzinfo=timezone.utc)


def _touch(path, when):
    os.utime(path, (when.timestamp(), when.timestamp()))


def _reporter(store, now):
    return HealthReporter(store, now=lambda: now)


def test_no_backups_is_degraded(store):
    status = _reporter(store, WEDNESDAY_NOON).status()

    assert status["status"] == DEGRADED
    assert status["service"] == "surrealdb-backup"
    assert status["last_backup"] is None
    assert status["backup_files"] == {
        "nightly": {"exists": False, "size": None, "modified": None},
        "weekly": {"exists": False, "size": None, "modified": None},
    }


def test_fresh_nightly_backup_is_healthy(backup_engine, store):
    assert backup_engine.run("nightly").ok
    _touch(store.path(Slot.NIGHTLY), datetime(2026, 10, 14, 2, 0, 30, tzinfo=timezone.utc))

    status = _reporter(store, WEDNESDAY_NOON).status()

    assert status["status"] == HEALTHY
    assert status["expected_slot"] == "nightly"
    assert status["last_backup"] is not None
    assert status["backup_files"]["nightly"]["exists"]
    assert status["backup_files"]["nightly"]["size"].endswith("B")
    assert status["backup_files"]["weekly"]["exists"] is False


def test_stale_nightly_backup_is_degraded(backup_engine, store):
    backup_engine.run("nightly")
    _touch(store.path(Slot.NIGHTLY), WEDNESDAY_NOON - timedelta(hours=30))

    assert _reporter(store, WEDNESDAY_NOON).status()["status"] == DEGRADED


def test_weekly_slot_is_expected_after_sunday_run(backup_engine, store):
    backup_engine.run("weekly")
    _touch(store.path(Slot.WEEKLY), datetime(2026, 10, 18, 3, 0, 40, tzinfo=timezone.utc))

    reporter = _reporter(store, SUNDAY_0400)

    assert reporter.expected_slot(SUNDAY_0400) is Slot.WEEKLY
    assert reporter.status()["status"] == HEALTHY


def test_nightly_slot_is_expected_between_sunday_runs(store):
    reporter = _reporter(store, SUNDAY_0400)

    assert reporter.expected_slot(datetime(2026, 10, 18, 2, 30, tzinfo=timezone.utc)) is Slot.NIGHTLY


def test_previous_fire_time():
    assert previous_fire_time("0 2 * * *", WEDNESDAY_NOON) == datetime(2026, 10, 14, 2, 0, tzinfo=timezone.utc)
    assert previous_fire_time("0 3 * * 0", WEDNESDAY_NOON) == datetime(2026, 10, 11, 3, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "size, expected",
    [(512, "512 B"), (1536, "1.5 KB"), (5 * 1024 * 1024, "5.0 MB"), (3 * 1024**4, "3072.0 GB")],
)
def test_human_size(size, expected):
    assert human_size(size) == expected


def test_health_endpoint_returns_200_when_degraded(store):
    client = TestClient(create_app(_reporter(store, WEDNESDAY_NOON)))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["backup_files"]["nightly"]["exists"] is False


def test_health_endpoint_reports_healthy(backup_engine, store):
    backup_engine.run("nightly")
    _touch(store.path(Slot.NIGHTLY), datetime(2026, 10, 14, 2, 1, tzinfo=timezone.utc))
    client = TestClient(create_app(_reporter(store, WEDNESDAY_NOON)))

    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["expected_slot"] == "nightly"


def test_unknown_path_is_404(store):
    client = TestClient(create_app(_reporter(store, WEDNESDAY_NOON)))

    response = client.get("/metrics")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}
