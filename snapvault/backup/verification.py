"""
Integrity verification for backup artifacts.

Verification is a read-only check: it never restores or extracts anything,
so it is safe to run unattended after every backup.
"""

import logging
import os
from typing import Dict, Optional

from snapvault.models import ArtifactKind, BackupArtifact, VerificationResult
from .commands import CommandExecutor, ExecutionError
from .sources import BackupSource


logger = logging.getLogger(__name__)

REASON_EMPTY = 'empty file'
REASON_NATIVE_FAILED = 'native verification failed'
REASON_LISTING_FAILED = 'archive listing failed'
REASON_ARCHIVE_EMPTY = 'archive is empty'


class VerificationEngine:
    """
    Per-kind integrity checks.

    Every artifact must be non-empty. Database snapshots are then checked
    with the driver's verify-only restore command; archives must list at
    least one entry.
    """

    def __init__(self, executor: CommandExecutor, sources: Dict[ArtifactKind, BackupSource], timeout: Optional[float] = None):
        self.executor = executor
        self.sources = sources
        self.timeout = timeout

    def verify(self, artifact: BackupArtifact) -> VerificationResult:
        """
        Verify a single artifact.

        Args:
            artifact: Artifact to check

        Returns:
            VerificationResult; ok=False carries the reason
        """
        try:
            size = os.stat(artifact.path).st_size
        except FileNotFoundError:
            return VerificationResult.failed(REASON_EMPTY)

        if size == 0:
            return VerificationResult.failed(REASON_EMPTY)

        source = self.sources.get(artifact.kind)
        if source is None:
            return VerificationResult.failed(f"no verifier configured for {artifact.kind.value}")

        try:
            result = self.executor.run(
                source.verify_command,
                source.verify_args(artifact.path),
                timeout=self.timeout,
                env=source.env
            )
        except ExecutionError as e:
            logger.warning(f"Verification command for {artifact.name} could not run: {e}")
            return VerificationResult.failed(f"verification command could not run ({e.cause})")

        if artifact.kind == ArtifactKind.DATABASE_SNAPSHOT:
            if not result.ok:
                logger.warning(f"Native verification of {artifact.name} exited with {result.exit_code}")
                return VerificationResult.failed(REASON_NATIVE_FAILED)
            return VerificationResult.passed()

        # File archive
        if not result.ok:
            return VerificationResult.failed(REASON_LISTING_FAILED)

        entries = [line for line in result.stdout.splitlines() if line.strip()]
        if not entries:
            return VerificationResult.failed(REASON_ARCHIVE_EMPTY)

        logger.debug(f"Archive {artifact.name} lists {len(entries)} entries")
        return VerificationResult.passed()
