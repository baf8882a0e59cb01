"""
Unit tests for data model helpers (snapvault/models.py).
"""

from datetime import datetime, timedelta, timezone

import pytest

from snapvault.models import (
    ArtifactKind,
    BackupArtifact,
    OperationOutcome,
    PruneFailure,
    PruneResult,
    VerificationResult,
    format_artifact_timestamp,
    parse_artifact_timestamp,
)


class TestArtifactKind:
    """Test kind inference from file names."""

    @pytest.mark.parametrize('name,expected', [
        ('database-backup-2024-01-15T12-00-00-000Z.bak', ArtifactKind.DATABASE_SNAPSHOT),
        ('files-backup-2024-01-15T12-00-00-000Z.zip', ArtifactKind.FILE_ARCHIVE),
        ('/var/backups/ANYTHING.BAK', ArtifactKind.DATABASE_SNAPSHOT),
        ('.backup.lock', None),
        ('notes.txt', None),
        ('archive.tar.gz', None),
    ])
    def test_from_path(self, name, expected):
        assert ArtifactKind.from_path(name) is expected

    def test_prefix_and_extension(self):
        assert ArtifactKind.DATABASE_SNAPSHOT.filename_prefix == 'database-backup-'
        assert ArtifactKind.DATABASE_SNAPSHOT.extension == '.bak'
        assert ArtifactKind.FILE_ARCHIVE.filename_prefix == 'files-backup-'
        assert ArtifactKind.FILE_ARCHIVE.extension == '.zip'


class TestArtifactTimestamps:
    """Test the filename timestamp format."""

    def test_format_replaces_colons_and_dots(self):
        moment = datetime(2024, 1, 15, 9, 5, 7, 123456, tzinfo=timezone.utc)

        assert format_artifact_timestamp(moment) == '2024-01-15T09-05-07-123Z'

    def test_format_converts_to_utc(self):
        moment = datetime(2024, 1, 15, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))

        assert format_artifact_timestamp(moment) == '2024-01-15T12-00-00-000Z'

    def test_parse_embedded_timestamp(self):
        parsed = parse_artifact_timestamp('/backups/database-backup-2024-01-15T09-05-07-123Z.bak')

        assert parsed == datetime(2024, 1, 15, 9, 5, 7, 123000, tzinfo=timezone.utc)

    def test_parse_without_millis(self):
        parsed = parse_artifact_timestamp('files-backup-2023-12-01T00-00-00Z.zip')

        assert parsed == datetime(2023, 12, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize('name', [
        'database-backup.bak',
        'database-backup-latest.bak',
        'database-backup-2024-13-45T99-00-00-000Z.bak',
    ])
    def test_parse_unparseable_returns_none(self, name):
        assert parse_artifact_timestamp(name) is None


class TestResults:
    """Test result value objects."""

    def test_verification_result_constructors(self):
        assert VerificationResult.passed() == VerificationResult(ok=True, reason=None)
        failed = VerificationResult.failed('empty file')
        assert not failed.ok
        assert failed.reason == 'empty file'

    def test_prune_result_merge(self):
        local = PruneResult(deleted=['/b/a.bak'], failed=[PruneFailure('/b/c.bak', 'denied')])
        offsite = PruneResult(deleted=['s3://bucket/a.bak'])

        local.merge(offsite)

        assert local.deleted == ['/b/a.bak', 's3://bucket/a.bak']
        assert local.to_dict()['failed'] == [{'path': '/b/c.bak', 'error': 'denied'}]

    def test_failure_outcome_carries_error_class(self):
        when = datetime(2024, 1, 15, tzinfo=timezone.utc)
        outcome = OperationOutcome.failure(RuntimeError('disk full'), when)

        data = outcome.to_dict()
        assert data['success'] is False
        assert data['error_message'] == 'disk full'
        assert data['error_class'] == 'RuntimeError'
        assert data['timestamp'] == when.isoformat()

    def test_success_outcome_omits_error_fields(self):
        outcome = OperationOutcome(
            success=True,
            timestamp=datetime(2024, 1, 15, tzinfo=timezone.utc),
            artifact_path='/b/x.bak',
            size_bytes=42
        )

        data = outcome.to_dict()
        assert 'error_message' not in data
        assert data['artifact_path'] == '/b/x.bak'
        assert data['size_bytes'] == 42

    def test_artifact_age_and_dict(self):
        artifact = BackupArtifact(
            path='/b/database-backup-2024-01-01T00-00-00-000Z.bak',
            kind=ArtifactKind.DATABASE_SNAPSHOT,
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            size_bytes=10
        )

        assert artifact.name == 'database-backup-2024-01-01T00-00-00-000Z.bak'
        assert artifact.age_days(datetime(2024, 1, 11, tzinfo=timezone.utc)) == 10
        assert artifact.to_dict()['kind'] == 'database_snapshot'
