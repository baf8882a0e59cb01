"""
Backup module for snapvault.

This module handles the core backup functionality including:
- External command execution
- Database snapshots and file-tree archives
- Integrity verification
- Retention policy enforcement
- Run locking and orchestration
"""

from .commands import CommandExecutor, CommandResult, ExecutionError
from .lock import LockContention, RunLock
from .notifications import EmailNotifier, LoggingNotifier, NotificationDispatcher, NotificationError
from .orchestrator import BackupOrchestrator, run_backup
from .retention import RetentionPolicy, RetentionWindow
from .sources import BackupCreationError, DatabaseSource, FileTreeSource
from .storage import ArtifactStore, S3Storage, StorageError
from .verification import VerificationEngine

__all__ = [
    'ArtifactStore',
    'BackupCreationError',
    'BackupOrchestrator',
    'CommandExecutor',
    'CommandResult',
    'DatabaseSource',
    'EmailNotifier',
    'ExecutionError',
    'FileTreeSource',
    'LockContention',
    'LoggingNotifier',
    'NotificationDispatcher',
    'NotificationError',
    'RetentionPolicy',
    'RetentionWindow',
    'RunLock',
    'S3Storage',
    'StorageError',
    'VerificationEngine',
    'run_backup'
]
