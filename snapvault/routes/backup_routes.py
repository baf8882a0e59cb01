"""
Backup routes - Read-only view of the artifact directory and run triggers.
"""

from flask import Blueprint, current_app, jsonify, request

from snapvault import scheduler as scheduler_module
from snapvault.backup.orchestrator import BackupOrchestrator
from snapvault.backup.storage import StorageError
from snapvault.models import ArtifactKind


bp = Blueprint('backups', __name__, url_prefix='/api/backups')


@bp.route('/', methods=['GET'])
def list_backups():
    """
    List artifacts currently on disk, newest first.

    Query params:
        - kind: database_snapshot or file_archive

    Returns:
        JSON with artifact records and totals
    """
    kind_filter = request.args.get('kind')
    kind = None
    if kind_filter:
        try:
            kind = ArtifactKind(kind_filter)
        except ValueError:
            return jsonify({'error': 'Invalid kind filter'}), 400

    settings = current_app.config['BACKUP_SETTINGS']
    # Read-only view: no notifications, no offsite client
    orchestrator = BackupOrchestrator(settings, dispatcher=None, offsite=None)

    try:
        artifacts = orchestrator.list_backups()
    except StorageError as e:
        current_app.logger.error(f"Failed to list backups: {e}")
        return jsonify({'error': str(e)}), 500

    if kind is not None:
        artifacts = [a for a in artifacts if a.kind == kind]

    records = []
    for artifact in artifacts:
        record = artifact.to_dict()
        record['size_mb'] = round(artifact.size_bytes / 1024 / 1024, 2)
        records.append(record)

    return jsonify({
        'backups': records,
        'total': len(records),
        'total_size_bytes': sum(a.size_bytes for a in artifacts),
        'retention_days': settings.retention_days
    })


@bp.route('/scheduler', methods=['GET'])
def scheduler_status():
    """
    Scheduler state and the outcome of the last run it executed.
    """
    last_report = scheduler_module.last_report

    return jsonify({
        'running': scheduler_module.is_scheduler_running(),
        'jobs': scheduler_module.get_scheduled_jobs(),
        'last_run': last_report.outcome.to_dict() if last_report else None
    })


@bp.route('/run', methods=['POST'])
def run_now():
    """
    Queue an immediate backup run on the scheduler.

    Returns:
        202 with the one-off job id, or 503 when the scheduler is not running
    """
    try:
        job_id = scheduler_module.trigger_backup_now()
    except RuntimeError as e:
        return jsonify({'error': str(e)}), 503

    return jsonify({'message': 'Backup run queued', 'job_id': job_id}), 202
