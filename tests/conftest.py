"""
Shared pytest fixtures for snapvault tests.

This module provides fixtures for:
- Backup settings pointing at a temporary directory
- A fake command executor standing in for sqlcmd/zip/unzip
- Pre-dated artifacts on disk
- Flask app and test client for the status API
- Mock S3 via moto
"""

import re
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import boto3
from moto import mock_aws

from snapvault import create_app
from snapvault.backup.commands import CommandResult
from snapvault.backup.orchestrator import BackupOrchestrator
from snapvault.config import BackupSettings
from snapvault.models import ArtifactKind, format_artifact_timestamp
from snapvault.telemetry import MetricsSink


NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeExecutor:
    """
    Stand-in for CommandExecutor.

    Understands the argument vectors built by DatabaseSource and
    FileTreeSource: snapshot commands write a file at the destination,
    verification commands return the configured exit code and listing.
    """

    def __init__(self):
        self.calls = []
        self.snapshot_exit = 0
        self.snapshot_content = b'BACKUP-DATA'
        self.verify_exit = 0
        self.archive_exit = 0
        self.archive_content = b'PK-ARCHIVE'
        self.list_exit = 0
        self.listing = 'files/\nfiles/report.txt\n'
        self.raise_on = {}

    def commands(self):
        return [command for command, _, _, _ in self.calls]

    def run(self, command, args=(), timeout=None, cwd=None, env=None):
        args = list(args)
        self.calls.append((command, args, cwd, env))

        if command in self.raise_on:
            raise self.raise_on[command]

        if command == 'sqlcmd':
            query = args[args.index('-Q') + 1]
            if query.startswith('BACKUP DATABASE'):
                dest = re.search(r"TO DISK = N'(.*)' WITH", query).group(1).replace("''", "'")
                if self.snapshot_exit == 0 and self.snapshot_content is not None:
                    with open(dest, 'wb') as f:
                        f.write(self.snapshot_content)
                return CommandResult(self.snapshot_exit, '', '' if self.snapshot_exit == 0 else 'Msg 3201, Level 16')
            return CommandResult(self.verify_exit, '', '')

        if command == 'zip':
            dest = args[2]
            if self.archive_exit == 0 and self.archive_content is not None:
                with open(dest, 'wb') as f:
                    f.write(self.archive_content)
            return CommandResult(self.archive_exit, '', '' if self.archive_exit == 0 else 'zip error: Nothing to do!')

        if command == 'unzip':
            return CommandResult(self.list_exit, self.listing if self.list_exit == 0 else '', '')

        raise AssertionError(f"Unexpected command {command}")


@pytest.fixture
def source_tree(tmp_path):
    """Directory tree used as ARCHIVE_SOURCE."""
    root = tmp_path / 'files'
    root.mkdir()
    (root / 'report.txt').write_text('quarterly numbers')
    nested = root / 'nested'
    nested.mkdir()
    (nested / 'notes.md').write_text('# notes')
    return root


@pytest.fixture
def backup_dir(tmp_path):
    return tmp_path / 'backups'


@pytest.fixture
def settings(backup_dir, source_tree):
    """Settings with both a database and a file archive configured."""
    return BackupSettings(
        backup_path=str(backup_dir),
        retention_days=30,
        db_host='db.internal',
        db_name='planmp',
        db_user='backup_user',
        db_password='s3cret',
        archive_source=str(source_tree),
        prune_workers=2
    )


@pytest.fixture
def db_only_settings(backup_dir):
    return BackupSettings(
        backup_path=str(backup_dir),
        db_host='db.internal',
        db_name='planmp',
        db_user='backup_user',
        db_password='s3cret'
    )


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def metrics():
    return MetricsSink()


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def orchestrator(settings, fake_executor, metrics, dispatcher):
    """Orchestrator with fake commands, a mock notification channel and a fixed clock."""
    return BackupOrchestrator(
        settings,
        executor=fake_executor,
        metrics=metrics,
        dispatcher=dispatcher,
        offsite=None,
        clock=lambda: NOW
    )


@pytest.fixture
def make_artifact(backup_dir):
    """
    Factory writing a dated artifact into the backup directory.

    Usage: make_artifact(ArtifactKind.DATABASE_SNAPSHOT, age_days=31)
    """
    def _make(kind=ArtifactKind.DATABASE_SNAPSHOT, age_days=0, content=b'old-backup', now=NOW):
        backup_dir.mkdir(parents=True, exist_ok=True)
        created = now - timedelta(days=age_days)
        path = backup_dir / f"{kind.filename_prefix}{format_artifact_timestamp(created)}{kind.extension}"
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture
def app(settings):
    """Flask app with test configuration (scheduler disabled)."""
    return create_app('testing', settings=settings)


@pytest.fixture
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def mock_s3(monkeypatch):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')

    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3
