"""
Storage handlers for backup artifacts.

Supports:
- ArtifactStore: the local backup directory (naming, discovery, deletion)
- S3Storage: optional offsite copies in AWS S3
"""

import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from snapvault.models import (
    ArtifactKind,
    BackupArtifact,
    format_artifact_timestamp,
    parse_artifact_timestamp,
)


LOCK_FILENAME = '.backup.lock'


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class ArtifactStore:
    """
    Handler for the local artifact directory.

    Artifacts live flat in the directory as
    database-backup-<timestamp>.bak and files-backup-<timestamp>.zip.
    Nothing is cached between calls: every listing re-reads the directory.
    """

    def __init__(self, base_path: str):
        """
        Initialize artifact store.

        Args:
            base_path: Directory holding the artifacts
        """
        self.base_path = Path(base_path).absolute()
        self._issued = set()
        self._issued_lock = threading.Lock()

    @property
    def lock_path(self) -> Path:
        return self.base_path / LOCK_FILENAME

    def ensure_directory(self):
        """
        Create the artifact directory if needed and check it is usable.

        Raises:
            StorageError: If the path exists but is not a writable directory
        """
        if self.base_path.exists() and not self.base_path.is_dir():
            raise StorageError(f"Backup path is not a directory: {self.base_path}")

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except FileExistsError:
            raise StorageError(f"Backup path is not a directory: {self.base_path}")
        except PermissionError as e:
            raise StorageError(f"Permission denied creating {self.base_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to create backup directory {self.base_path}: {e}")

        if not os.access(self.base_path, os.W_OK | os.X_OK):
            raise StorageError(f"Backup directory is not writable: {self.base_path}")

    def new_artifact_path(self, kind: ArtifactKind, now: Optional[datetime] = None) -> str:
        """
        Generate a fresh, unused artifact path.

        Format: {base_path}/{prefix}{YYYY-MM-DDTHH-MM-SS-mmmZ}{ext}

        If the name is already taken (same millisecond, or a file left on
        disk) the timestamp is moved forward one millisecond at a time.

        Args:
            kind: Artifact kind
            now: Creation moment (default: current UTC time)

        Returns:
            Absolute path that no other call in this process has returned
        """
        moment = now or datetime.now(timezone.utc)

        with self._issued_lock:
            while True:
                filename = f"{kind.filename_prefix}{format_artifact_timestamp(moment)}{kind.extension}"
                path = self.base_path / filename
                if filename not in self._issued and not path.exists():
                    self._issued.add(filename)
                    return str(path)
                moment += timedelta(milliseconds=1)

    def describe(self, path: str) -> BackupArtifact:
        """
        Build an artifact descriptor from a file on disk.

        The timestamp embedded in the filename is authoritative; the
        modification time is used when the name carries none.

        Args:
            path: Path to the artifact file

        Returns:
            BackupArtifact

        Raises:
            StorageError: If the file is missing or not a managed artifact
        """
        kind = ArtifactKind.from_path(path)
        if kind is None:
            raise StorageError(f"Not a managed artifact: {path}")

        try:
            stat = os.stat(path)
        except FileNotFoundError:
            raise StorageError(f"Artifact not found: {path}")
        except OSError as e:
            raise StorageError(f"Failed to stat {path}: {e}")

        created_at = parse_artifact_timestamp(path)
        if created_at is None:
            created_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)

        return BackupArtifact(
            path=os.path.abspath(path),
            kind=kind,
            created_at=created_at,
            size_bytes=stat.st_size
        )

    def list_artifacts(self) -> List[BackupArtifact]:
        """
        List all managed artifacts in the directory, newest first.

        Files with other extensions (including the lock file) are ignored.

        Returns:
            List of BackupArtifact

        Raises:
            StorageError: If the directory cannot be read
        """
        if not self.base_path.exists():
            return []

        try:
            entries = list(os.scandir(self.base_path))
        except OSError as e:
            raise StorageError(f"Failed to list backup directory {self.base_path}: {e}")

        artifacts = []
        for entry in entries:
            if not entry.is_file(follow_symlinks=False):
                continue
            if ArtifactKind.from_path(entry.name) is None:
                continue
            try:
                artifacts.append(self.describe(entry.path))
            except StorageError:
                # Removed between scandir and stat
                continue

        artifacts.sort(key=lambda a: a.created_at, reverse=True)
        return artifacts

    def delete(self, path: str):
        """
        Delete an artifact file.

        Args:
            path: Path of the artifact

        Raises:
            StorageError: If deletion fails
        """
        full_path = Path(path)

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete {full_path}: {e}")


class S3Storage:
    """
    Handler for offsite copies in AWS S3.

    Uploads artifacts with a structured key format:
    {prefix}/{YYYY}/{MM}/{filename}

    Credentials come from boto3's default chain (environment, profile,
    instance role).
    """

    def __init__(self, bucket_name: str, prefix: str = 'snapvault', region: str = 'us-east-1', client=None):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            prefix: Key prefix under which artifacts are stored
            region: AWS region (default: us-east-1)
            client: Pre-built boto3 S3 client (mainly for tests)
        """
        self.bucket_name = bucket_name
        self.prefix = prefix.strip('/')
        self.region = region

        if client is not None:
            self.s3_client = client
            return

        try:
            self.s3_client = boto3.client('s3', region_name=region)
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def key_for(self, artifact: BackupArtifact) -> str:
        created = artifact.created_at
        return f"{self.prefix}/{created.year}/{created.month:02d}/{artifact.name}"

    def upload(self, artifact: BackupArtifact) -> str:
        """
        Upload an artifact to S3.

        Args:
            artifact: Local artifact to copy offsite

        Returns:
            S3 key of uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(artifact.path):
            raise StorageError(f"Local file not found: {artifact.path}")

        s3_key = self.key_for(artifact)

        try:
            # upload_file switches to multipart for large snapshots
            self.s3_client.upload_file(artifact.path, self.bucket_name, s3_key)
            return s3_key
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to upload to S3: {e}")

    def delete(self, s3_key: str):
        """
        Delete an object from S3.

        Args:
            s3_key: S3 object key to delete

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 delete failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def list_objects(self) -> List[Dict[str, Any]]:
        """
        List managed artifacts stored under the prefix.

        Returns:
            List of dicts with 'Key', 'LastModified', 'Size' and 'CreatedAt'
            keys; CreatedAt comes from the filename when parseable

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=f"{self.prefix}/"):
                for obj in page.get('Contents', []):
                    if ArtifactKind.from_path(obj['Key']) is None:
                        continue
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size'],
                        'CreatedAt': parse_artifact_timestamp(obj['Key']) or obj['LastModified']
                    })

            return objects

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to list S3 objects: {e}")
