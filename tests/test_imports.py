"""Basic smoke tests to verify imports work correctly."""


def test_core_imports():
    """Test that core modules can be imported."""
    from surreal_backup.core.artifact_store import ArtifactStore
    from surreal_backup.core.backup_engine import BackupEngine
    from surreal_backup.core.config_manager import ConfigManager
    from surreal_backup.core.restore_engine import RestoreEngine

    assert ArtifactStore is not None
    assert BackupEngine is not None
    assert ConfigManager is not None
    assert RestoreEngine is not None


def test_utils_imports():
    """Test that utility modules can be imported."""
    from surreal_backup.utils.health import HealthReporter
    from surreal_backup.utils.notifications import NotificationManager
    from surreal_backup.utils.scheduler import BackupScheduler

    assert HealthReporter is not None
    assert NotificationManager is not None
    assert BackupScheduler is not None


def test_cli_import():
    """Test that the CLI entry point can be imported."""
    from surreal_backup.cli import cli, main

    assert cli is not None
    assert callable(main)
