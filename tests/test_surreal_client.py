"""surreal CLI invocation and the pre-flight health check."""

import subprocess

import httpx
import pytest

from surreal_backup.core import surreal_client as client_module
from surreal_backup.core.errors import ConnectivityError
from surreal_backup.core.keyvault import CredentialSet
from surreal_backup.core.surreal_client import SurrealClient

CREDENTIALS = CredentialSet(username="root", password="s3cret", namespace="app", database="main")


def test_export_passes_password_through_environment(monkeypatch, tmp_path):
    seen = {}

    def fake_run(args, **kwargs):
        seen["args"] = args
        seen["env"] = kwargs["env"]
        seen["timeout"] = kwargs["timeout"]
        return subprocess.CompletedProcess(args, 0, "", "")

    monkeypatch.setattr(client_module.subprocess, "run", fake_run)

    SurrealClient("http://db:8000/").export(CREDENTIALS, tmp_path / "out.surql", timeout=42)

    assert seen["args"] == [
        "surreal",
        "export",
        "--endpoint",
        "http://db:8000",
        "--username",
        "root",
        "--namespace",
        "app",
        "--database",
        "main",
        str(tmp_path / "out.surql"),
    ]
    assert "s3cret" not in seen["args"]
    assert seen["env"]["SURREAL_PASS"] == "s3cret"
    assert seen["timeout"] == 42


def test_non_zero_exit_is_connectivity_error(monkeypatch, tmp_path):
    monkeypatch.setattr(
        client_module.subprocess,
        "run",
        lambda args, **kwargs: subprocess.CompletedProcess(args, 1, "", "There was a problem with the database"),
    )

    with pytest.raises(ConnectivityError, match="problem with the database"):
        SurrealClient().import_(CREDENTIALS, tmp_path / "in.surql")


def test_timeout_is_connectivity_error(monkeypatch, tmp_path):
    def fake_run(args, **kwargs):
        raise subprocess.TimeoutExpired(args, kwargs["timeout"])

    monkeypatch.setattr(client_module.subprocess, "run", fake_run)

    with pytest.raises(ConnectivityError, match="timed out"):
        SurrealClient().export(CREDENTIALS, tmp_path / "out.surql", timeout=5)


def test_missing_binary(tmp_path):
    client = SurrealClient(binary=str(tmp_path / "no-such-surreal"))

    with pytest.raises(ConnectivityError, match="not found"):
        client.export(CREDENTIALS, tmp_path / "out.surql")


def test_health_check_retries_then_succeeds(monkeypatch):
    responses = [httpx.ConnectError("refused"), httpx.Response(503), httpx.Response(200)]
    sleeps = []

    def fake_get(url, timeout):
        assert url == "http://db:8000/health"
        outcome = responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(client_module.httpx, "get", fake_get)

    SurrealClient("http://db:8000", health_retries=3, health_retry_delay=5, sleep=sleeps.append).health_check()

    assert sleeps == [5, 5]


def test_health_check_gives_up(monkeypatch):
    monkeypatch.setattr(client_module.httpx, "get", lambda url, timeout: httpx.Response(500))

    with pytest.raises(ConnectivityError, match="after 2 attempts"):
        SurrealClient(health_retries=2, sleep=lambda s: None).health_check()


def test_reset_database_sends_statements_on_stdin(monkeypatch):
    seen = {}

    def fake_run(args, **kwargs):
        seen["args"] = args
        seen["input"] = kwargs["input"]
        return subprocess.CompletedProcess(args, 0, "", "")

    monkeypatch.setattr(client_module.subprocess, "run", fake_run)

    SurrealClient("http://db:8000").reset_database(CREDENTIALS)

    assert seen["args"][:2] == ["surreal", "sql"]
    assert "--hide-welcome" in seen["args"]
    assert seen["input"] == "REMOVE DATABASE `main`;\nDEFINE DATABASE `main`;\n"
