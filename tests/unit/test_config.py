"""
Unit tests for configuration (snapvault/config.py).
"""

import os

import pytest

from snapvault.config import BackupSettings, ConfigurationError


class TestFromEnv:
    """Test BackupSettings.from_env()."""

    def test_defaults(self):
        settings = BackupSettings.from_env({})

        assert settings.backup_path == 'backups'
        assert settings.retention_days == 30
        assert settings.schedule_cron == '0 0 * * *'
        assert settings.command_timeout == 3600
        assert settings.db_tool == 'sqlcmd'
        assert not settings.database_enabled
        assert not settings.archive_enabled
        assert not settings.offsite_enabled

    def test_full_environment(self):
        settings = BackupSettings.from_env({
            'BACKUP_PATH': '/var/backups/planmp',
            'BACKUP_RETENTION_DAYS': '7',
            'DB_HOST': 'db.internal',
            'DB_NAME': 'planmp',
            'DB_USER': 'backup_user',
            'DB_PASSWORD': ' secret with spaces ',
            'ARCHIVE_SOURCE': '/srv/files',
            'ALERT_EMAIL': 'ops@example.com',
            'SMTP_HOST': 'smtp.example.com',
            'SMTP_PORT': '2525',
            'SMTP_USE_TLS': 'false',
            'BACKUP_S3_BUCKET': 'offsite',
            'BACKUP_SCHEDULE': '30 2 * * *',
        })

        assert settings.backup_dir == '/var/backups/planmp'
        assert settings.retention_days == 7
        assert settings.db_password == ' secret with spaces '
        assert settings.database_enabled
        assert settings.archive_enabled
        assert settings.offsite_enabled
        assert settings.smtp_port == 2525
        assert settings.smtp_use_tls is False
        assert settings.schedule_cron == '30 2 * * *'

    def test_legacy_archive_variable(self):
        settings = BackupSettings.from_env({'SHAREPOINT_ROOT_FOLDER': '/srv/sharepoint'})

        assert settings.archive_source == '/srv/sharepoint'

    def test_archive_source_takes_precedence(self):
        settings = BackupSettings.from_env({
            'ARCHIVE_SOURCE': '/srv/files',
            'SHAREPOINT_ROOT_FOLDER': '/srv/sharepoint'
        })

        assert settings.archive_source == '/srv/files'

    def test_zero_retention_allowed(self):
        assert BackupSettings.from_env({'BACKUP_RETENTION_DAYS': '0'}).retention_days == 0

    @pytest.mark.parametrize('value', ['-1', 'thirty', '1.5'])
    def test_invalid_retention(self, value):
        with pytest.raises(ConfigurationError, match='BACKUP_RETENTION_DAYS'):
            BackupSettings.from_env({'BACKUP_RETENTION_DAYS': value})

    def test_invalid_timeout(self):
        with pytest.raises(ConfigurationError, match='BACKUP_COMMAND_TIMEOUT'):
            BackupSettings.from_env({'BACKUP_COMMAND_TIMEOUT': '0'})

    def test_blank_values_use_defaults(self):
        settings = BackupSettings.from_env({'BACKUP_RETENTION_DAYS': '  ', 'DB_NAME': ''})

        assert settings.retention_days == 30
        assert settings.db_name is None

    def test_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv('BACKUP_RETENTION_DAYS', '14')

        assert BackupSettings.from_env().retention_days == 14


class TestValidate:
    """Test BackupSettings.validate()."""

    def test_nothing_to_back_up(self):
        with pytest.raises(ConfigurationError, match='Nothing to back up'):
            BackupSettings().validate()

    def test_database_only(self):
        settings = BackupSettings(db_name='planmp')

        assert settings.validate() is settings

    def test_archive_only(self):
        BackupSettings(archive_source='/srv/files').validate()

    def test_workers(self):
        with pytest.raises(ConfigurationError, match='BACKUP_PRUNE_WORKERS'):
            BackupSettings(db_name='planmp', prune_workers=0).validate()

    def test_backup_dir_is_absolute(self):
        assert os.path.isabs(BackupSettings(backup_path='relative/dir').backup_dir)
