"""
Scheduler entry point: one backup run, configured entirely from the environment.

Exit code 0 on success (prune failures are logged, not fatal), 1 on any
failure to create or verify a backup.
"""

import logging
import os
import signal
import sys

from snapvault import configure_logging
from snapvault.backup.orchestrator import run_backup
from snapvault.config import BackupSettings, ConfigurationError


logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def _raise_system_exit(signum, frame):
    # Unwinds through the orchestrator's finally blocks so the lock is released
    raise SystemExit(128 + signum)


def main(environ=None) -> int:
    """
    Run one backup.

    Args:
        environ: Environment mapping (default: os.environ)

    Returns:
        Process exit code
    """
    env = os.environ if environ is None else environ
    configure_logging(env.get('LOG_LEVEL', 'INFO'), env.get('LOG_DIR'))

    previous_handler = signal.signal(signal.SIGTERM, _raise_system_exit)
    try:
        try:
            settings = BackupSettings.from_env(env)
        except ConfigurationError as e:
            logger.error(f"Invalid backup configuration: {e}")
            return EXIT_FAILURE

        report = run_backup(settings)
        return report.exit_code
    finally:
        signal.signal(signal.SIGTERM, previous_handler)


def run():
    sys.exit(main())


if __name__ == '__main__':
    run()
