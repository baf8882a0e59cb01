# Gunicorn configuration for the snapvault status API
# Only one worker may own the backup scheduler

import os
import logging

logger = logging.getLogger('gunicorn.error')

wsgi_app = 'snapvault:create_app()'


def post_fork(server, worker):
    """
    Called in the worker right after fork, before the app is loaded.

    Designates the first worker spawned (the arbiter numbers workers from 1)
    as the scheduler owner so scheduled backups are not triggered once per
    worker. The lock file in
    BACKUP_PATH still rejects a second concurrent run if this ever slips.

    Args:
        server: Gunicorn arbiter
        worker: Gunicorn worker instance (uses 'age' attribute: 1, 2, 3, ...)
    """
    if worker.age == 1:
        os.environ['SCHEDULER_WORKER'] = 'true'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): owns the backup scheduler")
    else:
        os.environ['SCHEDULER_WORKER'] = 'false'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): HTTP only (scheduler disabled)")
