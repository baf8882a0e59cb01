import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ArtifactKind(Enum):
    """Kinds of artifact managed in the backup directory"""
    DATABASE_SNAPSHOT = 'database_snapshot'
    FILE_ARCHIVE = 'file_archive'

    @property
    def extension(self) -> str:
        return ARTIFACT_EXTENSIONS[self]

    @property
    def filename_prefix(self) -> str:
        return ARTIFACT_PREFIXES[self]

    @classmethod
    def from_path(cls, path: str) -> Optional['ArtifactKind']:
        """Infer the kind from a file extension; None for unmanaged files."""
        _, ext = os.path.splitext(path)
        for kind, kind_ext in ARTIFACT_EXTENSIONS.items():
            if ext.lower() == kind_ext:
                return kind
        return None


ARTIFACT_EXTENSIONS = {
    ArtifactKind.DATABASE_SNAPSHOT: '.bak',
    ArtifactKind.FILE_ARCHIVE: '.zip',
}

ARTIFACT_PREFIXES = {
    ArtifactKind.DATABASE_SNAPSHOT: 'database-backup-',
    ArtifactKind.FILE_ARCHIVE: 'files-backup-',
}

# 2024-01-15T12-00-00-000Z (ISO-8601 with ':' and '.' replaced by '-')
_TIMESTAMP_RE = re.compile(
    r'(\d{4})-(\d{2})-(\d{2})T(\d{2})-(\d{2})-(\d{2})(?:-(\d{3}))?Z'
)


def format_artifact_timestamp(moment: datetime) -> str:
    """
    Format a moment as a filename-safe UTC timestamp.

    Args:
        moment: Aware or naive (assumed UTC) datetime

    Returns:
        Timestamp like 2024-01-15T12-00-00-000Z
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    millis = moment.microsecond // 1000
    return moment.strftime('%Y-%m-%dT%H-%M-%S') + f'-{millis:03d}Z'


def parse_artifact_timestamp(filename: str) -> Optional[datetime]:
    """
    Extract the creation timestamp embedded in an artifact filename.

    Args:
        filename: Artifact file name (directory part is ignored)

    Returns:
        Aware UTC datetime, or None if the name carries no parseable timestamp
    """
    match = _TIMESTAMP_RE.search(os.path.basename(filename))
    if not match:
        return None

    year, month, day, hour, minute, second, millis = match.groups()
    try:
        return datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second),
            int(millis or 0) * 1000,
            tzinfo=timezone.utc
        )
    except ValueError:
        # Matches the shape but not the calendar (e.g. month 13)
        return None


@dataclass(frozen=True)
class BackupArtifact:
    """A single backup file on disk."""
    path: str
    kind: ArtifactKind
    created_at: datetime
    size_bytes: int

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    def age_days(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds() / 86400

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'path': self.path,
            'kind': self.kind.value,
            'created_at': self.created_at.isoformat(),
            'size_bytes': self.size_bytes,
        }


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of an integrity check; a failed check is data, not an exception."""
    ok: bool
    reason: Optional[str] = None

    @classmethod
    def passed(cls) -> 'VerificationResult':
        return cls(ok=True)

    @classmethod
    def failed(cls, reason: str) -> 'VerificationResult':
        return cls(ok=False, reason=reason)


@dataclass
class PruneFailure:
    path: str
    error: str


@dataclass
class PruneResult:
    """Aggregated result of a retention sweep."""
    deleted: List[str] = field(default_factory=list)
    failed: List[PruneFailure] = field(default_factory=list)

    def merge(self, other: 'PruneResult') -> 'PruneResult':
        self.deleted.extend(other.deleted)
        self.failed.extend(other.failed)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'deleted': list(self.deleted),
            'failed': [{'path': f.path, 'error': f.error} for f in self.failed],
        }


@dataclass
class OperationOutcome:
    """
    Result of one backup run, handed to the notification channel.

    Created per invocation and never persisted.
    """
    success: bool
    timestamp: datetime
    artifact_path: Optional[str] = None
    size_bytes: Optional[int] = None
    error_message: Optional[str] = None
    error_class: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: BaseException, timestamp: datetime, **details) -> 'OperationOutcome':
        return cls(
            success=False,
            timestamp=timestamp,
            error_message=str(error),
            error_class=type(error).__name__,
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'success': self.success,
            'timestamp': self.timestamp.isoformat(),
            'artifact_path': self.artifact_path,
            'size_bytes': self.size_bytes,
        }
        if not self.success:
            data['error_message'] = self.error_message
            data['error_class'] = self.error_class
        if self.details:
            data['details'] = self.details
        return data


class RunState(Enum):
    IDLE = 'idle'
    INITIALIZING = 'initializing'
    CREATING = 'creating'
    VERIFYING = 'verifying'
    REPLICATING = 'replicating'
    PRUNING = 'pruning'
    SKIPPED_PRUNING = 'skipped_pruning'
    NOTIFYING = 'notifying'
    DONE = 'done'


@dataclass
class RunReport:
    """What a single orchestrator run did, in order."""
    outcome: OperationOutcome
    exit_code: int
    states: List[RunState] = field(default_factory=list)
    artifacts: List[BackupArtifact] = field(default_factory=list)
    prune: Optional[PruneResult] = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0
