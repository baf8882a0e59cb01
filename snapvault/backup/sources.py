"""
Source handlers for backup operations.

Supports:
- DatabaseSource: native database snapshot through the database CLI (sqlcmd)
- FileTreeSource: zip archive of a directory tree through the archive CLI

Each source knows how to build the argument vectors for creating an artifact
and for probing it read-only. Nothing here goes through a shell.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

from snapvault.config import BackupSettings
from snapvault.models import ArtifactKind
from .commands import CommandExecutor, CommandResult, ExecutionError


class BackupCreationError(Exception):
    """Raised when the native tool fails or produces no artifact."""
    pass


def _tail(text: str, limit: int = 500) -> str:
    text = (text or '').strip()
    return text[-limit:] if len(text) > limit else text


class BackupSource:
    """Common creation workflow shared by all sources."""

    kind: ArtifactKind = None
    command: str = ''

    def snapshot_args(self, dest_path: str) -> List[str]:
        raise NotImplementedError

    def verify_args(self, artifact_path: str) -> List[str]:
        raise NotImplementedError

    @property
    def verify_command(self) -> str:
        return self.command

    @property
    def snapshot_cwd(self) -> Optional[str]:
        return None

    @property
    def env(self) -> Dict[str, str]:
        return {}

    def check(self):
        """Validate the source before running anything."""
        pass

    def create(self, dest_path: str, executor: CommandExecutor, timeout: Optional[float] = None) -> CommandResult:
        """
        Run the native tool to write an artifact at dest_path.

        Args:
            dest_path: Where the artifact must appear
            executor: CommandExecutor used to run the tool
            timeout: Per-command timeout in seconds

        Returns:
            CommandResult of the tool

        Raises:
            BackupCreationError: If the tool cannot run, exits nonzero,
                or leaves no file behind
        """
        self.check()

        try:
            result = executor.run(
                self.command,
                self.snapshot_args(dest_path),
                timeout=timeout,
                cwd=self.snapshot_cwd,
                env=self.env
            )
        except ExecutionError as e:
            self._remove_partial(dest_path)
            raise BackupCreationError(f"{self.command} could not complete ({e.cause}): {e}")

        if not result.ok:
            self._remove_partial(dest_path)
            detail = _tail(result.stderr) or _tail(result.stdout)
            raise BackupCreationError(
                f"{self.command} exited with code {result.exit_code}: {detail}"
            )

        if not os.path.isfile(dest_path):
            raise BackupCreationError(f"{self.command} reported success but produced no file at {dest_path}")

        return result

    @staticmethod
    def _remove_partial(dest_path: str):
        if os.path.exists(dest_path):
            try:
                os.remove(dest_path)
            except OSError:
                pass


class DatabaseSource(BackupSource):
    """
    Handler for database snapshots via sqlcmd.

    The password is passed through the SQLCMDPASSWORD environment variable
    so it never shows up in the process list.
    """

    kind = ArtifactKind.DATABASE_SNAPSHOT

    def __init__(
        self,
        database: str,
        host: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        tool: str = 'sqlcmd'
    ):
        """
        Initialize database source handler.

        Args:
            database: Database name
            host: Server host (default: tool's default server)
            user: Login name; trusted connection is used when omitted
            password: Login password
            tool: Database CLI executable
        """
        self.database = database
        self.host = host
        self.user = user
        self.password = password
        self.command = tool

    def check(self):
        if not self.database:
            raise BackupCreationError("Database name is not configured")

    @property
    def env(self) -> Dict[str, str]:
        return {'SQLCMDPASSWORD': self.password} if self.password else {}

    def _connection_args(self, include_database: bool) -> List[str]:
        args = []
        if self.host:
            args += ['-S', self.host]
        if include_database:
            args += ['-d', self.database]
        if self.user:
            args += ['-U', self.user]
        else:
            args.append('-E')
        # Exit with a nonzero code when the server reports an error
        args.append('-b')
        return args

    @staticmethod
    def _quote_identifier(name: str) -> str:
        return '[' + name.replace(']', ']]') + ']'

    @staticmethod
    def _quote_literal(value: str) -> str:
        return "N'" + value.replace("'", "''") + "'"

    def snapshot_args(self, dest_path: str) -> List[str]:
        query = (
            f"BACKUP DATABASE {self._quote_identifier(self.database)} "
            f"TO DISK = {self._quote_literal(dest_path)} WITH FORMAT, CHECKSUM"
        )
        return self._connection_args(include_database=True) + ['-Q', query]

    def verify_args(self, artifact_path: str) -> List[str]:
        query = f"RESTORE VERIFYONLY FROM DISK = {self._quote_literal(artifact_path)} WITH CHECKSUM"
        return self._connection_args(include_database=False) + ['-Q', query]


class FileTreeSource(BackupSource):
    """
    Handler for file-tree archives via zip/unzip.

    The archive is built from the parent of the source root so entries are
    stored as <root name>/..., not with absolute paths.
    """

    kind = ArtifactKind.FILE_ARCHIVE

    def __init__(self, source_root: str, tool: str = 'zip', list_tool: str = 'unzip'):
        """
        Initialize file-tree source handler.

        Args:
            source_root: Directory (or file) to archive
            tool: Archive creation executable
            list_tool: Archive listing executable
        """
        self.source_root = Path(source_root).absolute()
        self.command = tool
        self.list_tool = list_tool

    def check(self):
        if not self.source_root.exists():
            raise BackupCreationError(f"Archive source does not exist: {self.source_root}")

    @property
    def verify_command(self) -> str:
        return self.list_tool

    @property
    def snapshot_cwd(self) -> Optional[str]:
        return str(self.source_root.parent)

    def snapshot_args(self, dest_path: str) -> List[str]:
        return ['-r', '-q', dest_path, self.source_root.name]

    def verify_args(self, artifact_path: str) -> List[str]:
        # zipinfo mode, names only: lists entries without extracting anything
        return ['-Z1', artifact_path]


def create_source(kind: ArtifactKind, settings: BackupSettings) -> BackupSource:
    """
    Factory function to create the source handler for an artifact kind.

    Args:
        kind: Artifact kind
        settings: Backup settings holding connection and tool options

    Returns:
        DatabaseSource or FileTreeSource instance

    Raises:
        ValueError: If kind is unknown
    """
    if kind == ArtifactKind.DATABASE_SNAPSHOT:
        return DatabaseSource(
            database=settings.db_name,
            host=settings.db_host,
            user=settings.db_user,
            password=settings.db_password,
            tool=settings.db_tool
        )
    elif kind == ArtifactKind.FILE_ARCHIVE:
        return FileTreeSource(
            source_root=settings.archive_source or '',
            tool=settings.archive_tool,
            list_tool=settings.archive_list_tool
        )
    else:
        raise ValueError(f"Invalid artifact kind: {kind}")
