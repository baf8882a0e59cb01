import os
from dataclasses import dataclass
from typing import Mapping, Optional


class ConfigurationError(Exception):
    """Raised when the backup environment is invalid."""
    pass


def _get_int(environ: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    """Read a non-negative integer option, rejecting garbage instead of guessing."""
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default

    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")

    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")

    return value


def _get_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _get_str(environ: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip()


@dataclass(frozen=True)
class BackupSettings:
    """
    Immutable settings for one orchestrator instance.

    Built once from the process environment (or any mapping) and injected
    into BackupOrchestrator, so tests can run several orchestrators side by
    side without touching os.environ.
    """

    backup_path: str = 'backups'
    retention_days: int = 30

    # Database driver
    db_host: Optional[str] = None
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_tool: str = 'sqlcmd'

    # File-tree archive
    archive_source: Optional[str] = None
    archive_tool: str = 'zip'
    archive_list_tool: str = 'unzip'

    # Execution
    command_timeout: int = 3600
    prune_workers: int = 4
    lock_stale_seconds: int = 21600

    # Notification
    alert_email: Optional[str] = None
    alert_from: str = 'backups@localhost'
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True

    # Offsite replication
    s3_bucket: Optional[str] = None
    s3_prefix: str = 'snapvault'
    aws_region: str = 'us-east-1'

    # Scheduler
    schedule_cron: str = '0 0 * * *'

    @property
    def backup_dir(self) -> str:
        return os.path.abspath(self.backup_path)

    @property
    def database_enabled(self) -> bool:
        return bool(self.db_name)

    @property
    def archive_enabled(self) -> bool:
        return bool(self.archive_source)

    @property
    def offsite_enabled(self) -> bool:
        return bool(self.s3_bucket)

    def validate(self) -> 'BackupSettings':
        """
        Check that the settings describe at least one backup target.

        Returns:
            self, to allow chaining

        Raises:
            ConfigurationError: If nothing would be backed up
        """
        if not self.database_enabled and not self.archive_enabled:
            raise ConfigurationError(
                "Nothing to back up: set DB_NAME for a database snapshot "
                "and/or ARCHIVE_SOURCE for a file archive"
            )
        if self.prune_workers < 1:
            raise ConfigurationError("BACKUP_PRUNE_WORKERS must be at least 1")
        if self.command_timeout < 1:
            raise ConfigurationError("BACKUP_COMMAND_TIMEOUT must be at least 1 second")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'BackupSettings':
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            BackupSettings instance (not yet validated)

        Raises:
            ConfigurationError: If a numeric option cannot be parsed
        """
        env = os.environ if environ is None else environ

        return cls(
            backup_path=_get_str(env, 'BACKUP_PATH', 'backups'),
            retention_days=_get_int(env, 'BACKUP_RETENTION_DAYS', 30),
            db_host=_get_str(env, 'DB_HOST'),
            db_name=_get_str(env, 'DB_NAME'),
            db_user=_get_str(env, 'DB_USER'),
            db_password=env.get('DB_PASSWORD') or None,
            db_tool=_get_str(env, 'DB_TOOL', 'sqlcmd'),
            archive_source=_get_str(env, 'ARCHIVE_SOURCE') or _get_str(env, 'SHAREPOINT_ROOT_FOLDER'),
            archive_tool=_get_str(env, 'ARCHIVE_TOOL', 'zip'),
            archive_list_tool=_get_str(env, 'ARCHIVE_LIST_TOOL', 'unzip'),
            command_timeout=_get_int(env, 'BACKUP_COMMAND_TIMEOUT', 3600, minimum=1),
            prune_workers=_get_int(env, 'BACKUP_PRUNE_WORKERS', 4, minimum=1),
            lock_stale_seconds=_get_int(env, 'BACKUP_LOCK_STALE_SECONDS', 21600),
            alert_email=_get_str(env, 'ALERT_EMAIL'),
            alert_from=_get_str(env, 'ALERT_FROM', 'backups@localhost'),
            smtp_host=_get_str(env, 'SMTP_HOST'),
            smtp_port=_get_int(env, 'SMTP_PORT', 587, minimum=1),
            smtp_username=_get_str(env, 'SMTP_USERNAME'),
            smtp_password=env.get('SMTP_PASSWORD') or None,
            smtp_use_tls=_get_bool(env, 'SMTP_USE_TLS', True),
            s3_bucket=_get_str(env, 'BACKUP_S3_BUCKET'),
            s3_prefix=_get_str(env, 'BACKUP_S3_PREFIX', 'snapvault'),
            aws_region=_get_str(env, 'AWS_REGION', 'us-east-1'),
            schedule_cron=_get_str(env, 'BACKUP_SCHEDULE', '0 0 * * *'),
        )


class Config:
    """Base configuration for the status API process"""

    SECRET_KEY = os.environ.get('SECRET_KEY') or 'snapvault-status-api'

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    LOG_DIR = os.environ.get('LOG_DIR')

    # Scheduler
    SCHEDULER_ENABLED = True
    SCHEDULER_TIMEZONE = 'UTC'

    JSON_SORT_KEYS = False


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False
    SCHEDULER_ENABLED = False
    LOG_DIR = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
