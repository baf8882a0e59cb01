"""
Backup orchestrator - coordinates one complete backup run.

Workflow:
1. Initialize the artifact directory and take the run lock
2. Create the database snapshot and/or file archive
3. Verify every new artifact
4. Copy verified artifacts offsite (if configured)
5. Prune artifacts past the retention window (only if step 3 passed)
6. Notify the operator
7. Release the lock
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from snapvault.config import BackupSettings, ConfigurationError
from snapvault.models import (
    ArtifactKind,
    BackupArtifact,
    OperationOutcome,
    PruneFailure,
    PruneResult,
    RunReport,
    RunState,
    VerificationResult,
)
from snapvault.telemetry import LoggingSink, MetricsSink
from .commands import CommandExecutor
from .lock import LockContention, RunLock
from .notifications import NotificationDispatcher, build_notification, create_dispatcher
from .retention import RetentionPolicy, RetentionWindow
from .sources import BackupCreationError, BackupSource, create_source
from .storage import ArtifactStore, S3Storage, StorageError
from .verification import VerificationEngine


# Errors that end a run; anything else escaping a step is treated the same way
FATAL_ERRORS = (ConfigurationError, StorageError, BackupCreationError, LockContention)

VERIFICATION_FAILURE = 'VerificationFailure'

_DEFAULT = object()


class BackupOrchestrator:
    """
    Owns the ordering and failure policy of a backup run.

    All collaborators are injected; the defaults are built from settings.
    """

    def __init__(
        self,
        settings: BackupSettings,
        executor: Optional[CommandExecutor] = None,
        logging_sink: Optional[LoggingSink] = None,
        metrics: Optional[MetricsSink] = None,
        dispatcher=_DEFAULT,
        offsite=_DEFAULT,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize backup orchestrator.

        Args:
            settings: Backup settings
            executor: Command runner (default: CommandExecutor with the configured timeout)
            logging_sink: Structured logger
            metrics: Metrics recorder
            dispatcher: Notification channel; None disables notifications
                (default: built from ALERT_EMAIL / SMTP settings)
            offsite: S3Storage for offsite copies; None disables replication
                (default: built from BACKUP_S3_BUCKET)
            clock: Returns the current aware UTC time
        """
        self.settings = settings
        self.executor = executor or CommandExecutor(default_timeout=settings.command_timeout)
        self.log = logging_sink or LoggingSink()
        self.metrics = metrics or MetricsSink()
        self.dispatcher: Optional[NotificationDispatcher] = (
            create_dispatcher(settings) if dispatcher is _DEFAULT else dispatcher
        )
        self._offsite = offsite
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.store = ArtifactStore(settings.backup_dir)
        self.lock = RunLock(str(self.store.lock_path), stale_seconds=settings.lock_stale_seconds)

        self.sources: Dict[ArtifactKind, BackupSource] = {}
        if settings.database_enabled:
            self.sources[ArtifactKind.DATABASE_SNAPSHOT] = create_source(ArtifactKind.DATABASE_SNAPSHOT, settings)
        if settings.archive_enabled:
            self.sources[ArtifactKind.FILE_ARCHIVE] = create_source(ArtifactKind.FILE_ARCHIVE, settings)

        self.verifier = VerificationEngine(self.executor, self.sources, timeout=settings.command_timeout)
        self.states: List[RunState] = []

    @property
    def offsite(self) -> Optional[S3Storage]:
        if self._offsite is _DEFAULT:
            self._offsite = None
            if self.settings.offsite_enabled:
                try:
                    self._offsite = S3Storage(
                        bucket_name=self.settings.s3_bucket,
                        prefix=self.settings.s3_prefix,
                        region=self.settings.aws_region
                    )
                except StorageError as e:
                    self.log.warn('Offsite storage unavailable, replication disabled', {'error': str(e)})
        return self._offsite

    # ------------------------------------------------------------------
    # Individual operations
    # ------------------------------------------------------------------

    def initialize(self):
        """
        Prepare the artifact directory and take the run lock.

        Raises:
            ConfigurationError: If nothing is configured to be backed up
            StorageError: If the directory is unusable
            LockContention: If another run holds the lock
        """
        self.settings.validate()
        self.store.ensure_directory()
        self.lock.acquire()
        self.log.info('Backup directory initialized', {'path': str(self.store.base_path)})

    def shutdown(self):
        """Release the run lock (no-op when not held)."""
        self.lock.release()

    def create_database_snapshot(self) -> BackupArtifact:
        """
        Create a database snapshot via the database driver.

        Raises:
            BackupCreationError: If the snapshot command fails or writes no file
        """
        return self._create(ArtifactKind.DATABASE_SNAPSHOT, 'DatabaseBackup', 'Database backup')

    def create_file_archive(self) -> BackupArtifact:
        """
        Create a zip archive of the configured source tree.

        Raises:
            BackupCreationError: If the archive command fails or writes no file
        """
        return self._create(ArtifactKind.FILE_ARCHIVE, 'FileBackup', 'File backup')

    def _create(self, kind: ArtifactKind, metric_name: str, label: str) -> BackupArtifact:
        source = self.sources.get(kind)
        if source is None:
            raise BackupCreationError(f"{label} is not configured")

        path = self.store.new_artifact_path(kind, self.clock())
        started = time.monotonic()

        try:
            source.create(path, self.executor, timeout=self.settings.command_timeout)
            artifact = self.store.describe(path)
        except StorageError as e:
            error = BackupCreationError(f"{label} produced no usable artifact: {e}")
            self.log.error(f"{label} failed", {'file': path, 'error': str(error)})
            self.metrics.track_exception(error)
            raise error
        except BackupCreationError as e:
            self.log.error(f"{label} failed", {'file': path, 'error': str(e)})
            self.metrics.track_exception(e)
            raise

        duration = (time.monotonic() - started) * 1000
        self.metrics.track_duration(metric_name, duration)
        self.log.info(f"{label} created", {
            'file': artifact.name,
            'size_bytes': artifact.size_bytes,
            'duration_ms': round(duration)
        })
        return artifact

    def verify_backup(self, artifact: BackupArtifact) -> VerificationResult:
        """
        Verify an artifact. Never raises.

        Returns:
            VerificationResult
        """
        try:
            result = self.verifier.verify(artifact)
        except Exception as e:
            self.metrics.track_exception(e)
            result = VerificationResult.failed(f"verification error: {e}")

        if result.ok:
            self.log.info('Backup verified successfully', {'file': artifact.name})
        else:
            self.log.error('Backup verification failed', {'file': artifact.name, 'reason': result.reason})
        return result

    def replicate(self, artifacts: List[BackupArtifact]) -> Tuple[Dict[str, str], Dict[str, str]]:
        """
        Copy artifacts offsite. Failures are logged, never raised.

        Returns:
            (uploaded {name: s3_key}, errors {name: message})
        """
        uploaded, errors = {}, {}
        storage = self.offsite
        if storage is None:
            return uploaded, errors

        for artifact in artifacts:
            try:
                uploaded[artifact.name] = storage.upload(artifact)
                self.log.info('Backup copied offsite', {'file': artifact.name, 's3_key': uploaded[artifact.name]})
            except StorageError as e:
                errors[artifact.name] = str(e)
                self.log.warn('Offsite copy failed', {'file': artifact.name, 'error': str(e)})
                self.metrics.track_exception(e)

        return uploaded, errors

    def clean_old_backups(self, window: Optional[RetentionWindow] = None) -> PruneResult:
        """
        Delete artifacts older than the retention window.

        Each deletion is independent: a file that cannot be removed is
        recorded and the sweep carries on with the rest.

        Args:
            window: Retention window (default: BACKUP_RETENTION_DAYS)

        Returns:
            PruneResult with deleted paths and per-path failures
        """
        window = window or RetentionWindow(self.settings.retention_days)
        now = self.clock()
        result = PruneResult()

        try:
            artifacts = self.store.list_artifacts()
        except StorageError as e:
            self.log.error('Failed to list backups for cleanup', {'error': str(e)})
            self.metrics.track_exception(e)
            result.failed.append(PruneFailure(path=str(self.store.base_path), error=str(e)))
            return result

        expired = [a for a in artifacts if RetentionPolicy.is_expired(a.created_at, now, window)]

        if expired:
            workers = min(self.settings.prune_workers, len(expired))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='prune') as pool:
                futures = {pool.submit(self.store.delete, a.path): a for a in expired}
                for future in as_completed(futures):
                    artifact = futures[future]
                    try:
                        future.result()
                    except Exception as e:
                        result.failed.append(PruneFailure(path=artifact.path, error=str(e)))
                        self.log.warn('Failed to delete old backup', {'file': artifact.name, 'error': str(e)})
                        continue
                    result.deleted.append(artifact.path)
                    self.log.info('Old backup deleted', {
                        'file': artifact.name,
                        'age_days': round(artifact.age_days(now), 1)
                    })

        if self.offsite is not None:
            result.merge(self._clean_offsite(window, now))

        self.log.info('Retention cleanup complete', {
            'retention_days': window.days,
            'deleted': len(result.deleted),
            'failed': len(result.failed)
        })
        return result

    def _clean_offsite(self, window: RetentionWindow, now: datetime) -> PruneResult:
        storage = self.offsite
        result = PruneResult()

        try:
            objects = storage.list_objects()
        except StorageError as e:
            self.log.warn('Failed to list offsite backups', {'error': str(e)})
            result.failed.append(PruneFailure(path=f"s3://{storage.bucket_name}/{storage.prefix}/", error=str(e)))
            return result

        for obj in objects:
            if not RetentionPolicy.is_expired(obj['CreatedAt'], now, window):
                continue

            location = f"s3://{storage.bucket_name}/{obj['Key']}"
            try:
                storage.delete(obj['Key'])
                result.deleted.append(location)
                self.log.info('Old offsite backup deleted', {'key': obj['Key']})
            except StorageError as e:
                result.failed.append(PruneFailure(path=location, error=str(e)))
                self.log.warn('Failed to delete offsite backup', {'key': obj['Key'], 'error': str(e)})

        return result

    def notify_status(self, outcome: OperationOutcome) -> bool:
        """
        Send the outcome to the operator channel.

        Delivery problems are logged and swallowed: a notification failure
        never fails the backup run.

        Returns:
            True if a notification was handed to the channel successfully
        """
        if self.dispatcher is None:
            self.log.debug('Notification skipped: ALERT_EMAIL not set')
            return False

        subject, body = build_notification(outcome)
        try:
            self.dispatcher.send(subject, body)
        except Exception as e:
            self.log.error('Failed to send backup notification', {'error': str(e)})
            self.metrics.track_exception(e)
            return False

        self.log.info('Backup notification sent', {'success': outcome.success})
        return True

    def list_backups(self) -> List[BackupArtifact]:
        """Artifacts currently on disk, newest first."""
        return self.store.list_artifacts()

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def _enter(self, state: RunState):
        self.states.append(state)
        self.log.debug('Backup run state', {'state': state.value})

    def run(self, window: Optional[RetentionWindow] = None) -> RunReport:
        """
        Execute one complete backup run.

        Fatal errors are caught here, reported and turned into exit code 1.
        The lock is released on every path, including SystemExit raised by
        a signal handler.

        Returns:
            RunReport
        """
        self.states = []
        self._enter(RunState.IDLE)
        artifacts: List[BackupArtifact] = []
        report = RunReport(outcome=None, exit_code=1, states=self.states, artifacts=artifacts)

        try:
            try:
                outcome = self._run_steps(artifacts, report, window)
            except FATAL_ERRORS as e:
                self.log.error('Backup run failed', {'error_class': type(e).__name__, 'error': str(e)})
                self.metrics.track_exception(e)
                outcome = self._failure(e, artifacts)
            except Exception as e:
                self.log.error('Backup run failed unexpectedly', {'error_class': type(e).__name__, 'error': str(e)}, exc_info=True)
                self.metrics.track_exception(e)
                outcome = self._failure(e, artifacts)

            self._enter(RunState.NOTIFYING)
            self.notify_status(outcome)
            self._enter(RunState.DONE)
        finally:
            self.shutdown()

        report.outcome = outcome
        report.exit_code = 0 if outcome.success else 1
        return report

    def _run_steps(self, artifacts: List[BackupArtifact], report: RunReport, window: Optional[RetentionWindow]) -> OperationOutcome:
        self._enter(RunState.INITIALIZING)
        self.initialize()

        self._enter(RunState.CREATING)
        if ArtifactKind.DATABASE_SNAPSHOT in self.sources:
            artifacts.append(self.create_database_snapshot())
        if ArtifactKind.FILE_ARCHIVE in self.sources:
            artifacts.append(self.create_file_archive())

        self._enter(RunState.VERIFYING)
        for artifact in artifacts:
            result = self.verify_backup(artifact)
            if not result.ok:
                # An unverified artifact must never trigger eviction of older ones
                self._enter(RunState.SKIPPED_PRUNING)
                return OperationOutcome(
                    success=False,
                    timestamp=self.clock(),
                    artifact_path=artifact.path,
                    size_bytes=artifact.size_bytes,
                    error_message=f"Backup verification failed for {artifact.name}: {result.reason}",
                    error_class=VERIFICATION_FAILURE,
                    details={'artifacts': [a.to_dict() for a in artifacts]}
                )

        details = {'artifacts': [a.to_dict() for a in artifacts]}

        if self.offsite is not None:
            self._enter(RunState.REPLICATING)
            uploaded, errors = self.replicate(artifacts)
            details['offsite'] = {'uploaded': uploaded, 'errors': errors}

        # With a zero-day window this also evicts the artifacts created above
        self._enter(RunState.PRUNING)
        report.prune = self.clean_old_backups(window)
        details['pruned'] = len(report.prune.deleted)
        if report.prune.failed:
            details['prune_failures'] = report.prune.to_dict()['failed']

        primary = artifacts[0]
        return OperationOutcome(
            success=True,
            timestamp=self.clock(),
            artifact_path=primary.path,
            size_bytes=primary.size_bytes,
            details=details
        )

    def _failure(self, error: BaseException, artifacts: List[BackupArtifact]) -> OperationOutcome:
        details = {}
        if artifacts:
            details['artifacts'] = [a.to_dict() for a in artifacts]
        return OperationOutcome.failure(error, self.clock(), **details)


def run_backup(settings: Optional[BackupSettings] = None, **kwargs) -> RunReport:
    """
    Run one backup with settings from the environment.

    This function is what the CLI and the scheduler call.

    Returns:
        RunReport from BackupOrchestrator.run()
    """
    settings = settings or BackupSettings.from_env()
    orchestrator = BackupOrchestrator(settings, **kwargs)
    return orchestrator.run()
