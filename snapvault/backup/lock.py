"""
Directory-scoped advisory lock ensuring at most one backup run at a time.

The lock file holds {"pid": ..., "acquiredAt": ...}. A lock older than the
stale threshold, or whose owner process no longer exists on this host, is
replaced; any other existing lock makes acquire() fail immediately.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class LockContention(Exception):
    """Raised when another run holds the backup lock."""

    def __init__(self, message: str, holder_pid: Optional[int] = None, acquired_at: Optional[str] = None):
        super().__init__(message)
        self.holder_pid = holder_pid
        self.acquired_at = acquired_at


def _pid_alive(pid: int) -> bool:
    if os.name != 'posix':
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    return True


class RunLock:
    """Lock file guarding one artifact directory."""

    def __init__(self, path: str, stale_seconds: int = 21600):
        """
        Initialize run lock.

        Args:
            path: Lock file path (normally <backup dir>/.backup.lock)
            stale_seconds: Age after which a held lock is considered abandoned
        """
        self.path = Path(path)
        self.stale_seconds = stale_seconds
        self.acquired = False

    def read(self) -> Optional[Dict[str, Any]]:
        """
        Read the current lock holder.

        Returns:
            Lock contents, {} if the file is unreadable garbage, None if absent
        """
        return self._read_path(self.path)

    @staticmethod
    def _read_path(path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def _age_seconds(self, info: Dict[str, Any]) -> Optional[float]:
        acquired_at = info.get('acquiredAt')
        if acquired_at:
            try:
                moment = datetime.fromisoformat(acquired_at)
                if moment.tzinfo is None:
                    moment = moment.replace(tzinfo=timezone.utc)
                return (datetime.now(timezone.utc) - moment).total_seconds()
            except (TypeError, ValueError):
                pass

        try:
            mtime = os.stat(self.path).st_mtime
        except OSError:
            return None
        return datetime.now(timezone.utc).timestamp() - mtime

    def is_stale(self, info: Optional[Dict[str, Any]]) -> bool:
        if info is None:
            return True

        age = self._age_seconds(info)
        if age is not None and age > self.stale_seconds:
            return True

        pid = info.get('pid')
        if isinstance(pid, int) and pid != os.getpid() and not _pid_alive(pid):
            return True

        return False

    def acquire(self):
        """
        Take the lock without blocking.

        Raises:
            LockContention: If a live, non-stale lock is held
        """
        for _ in range(2):
            try:
                fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                info = self.read()
                if self.is_stale(info) and self._evict(info):
                    continue

                info = info or {}
                raise LockContention(
                    f"Another backup run holds {self.path} "
                    f"(pid={info.get('pid')}, acquiredAt={info.get('acquiredAt')})",
                    holder_pid=info.get('pid'),
                    acquired_at=info.get('acquiredAt')
                )

            payload = {
                'pid': os.getpid(),
                'acquiredAt': datetime.now(timezone.utc).isoformat()
            }
            with os.fdopen(fd, 'w') as f:
                json.dump(payload, f)

            self.acquired = True
            logger.debug(f"Acquired backup lock {self.path}")
            return

        raise LockContention(f"Could not acquire {self.path}: lock keeps reappearing")

    def _evict(self, stale_info: Optional[Dict[str, Any]]) -> bool:
        """
        Move a stale lock out of the way.

        The file is renamed aside first and only deleted if it still holds
        the payload that was judged stale. If another run replaced it in the
        meantime, its lock is put back.

        Returns:
            True if the path is free to be created again
        """
        aside = self.path.with_name(f"{self.path.name}.stale.{os.getpid()}")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            # Already removed by a competing run
            return True

        moved = self._read_path(aside)
        if moved == stale_info:
            logger.warning(f"Removing stale backup lock {self.path} (holder: {stale_info})")
            aside.unlink()
            return True

        # A fresh lock was taken between read() and rename(); hand it back
        try:
            os.link(aside, self.path)
            aside.unlink()
        except FileExistsError:
            aside.unlink()
        except OSError:
            os.rename(aside, self.path)
        return False

    def release(self):
        """Remove the lock file if this process owns it."""
        if not self.acquired:
            return

        self.acquired = False
        info = self.read()
        if not info or info.get('pid') != os.getpid():
            logger.warning(f"Backup lock {self.path} no longer belongs to this process, leaving it")
            return

        try:
            self.path.unlink()
            logger.debug(f"Released backup lock {self.path}")
        except FileNotFoundError:
            pass

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
