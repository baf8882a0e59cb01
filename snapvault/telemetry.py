"""
Logging and metrics collaborators used by the backup orchestrator.

LoggingSink adapts leveled, structured messages onto the standard logging
module. MetricsSink records named timings and exceptions; the default
implementation keeps them in memory and mirrors them to a metrics logger so
they show up in the run's log output.
"""

import logging
import threading
import traceback
from collections import defaultdict
from typing import Any, Dict, List, Optional


def _format_fields(fields: Optional[Dict[str, Any]]) -> str:
    if not fields:
        return ''
    return ' ' + ' '.join(f"{key}={value}" for key, value in fields.items())


class LoggingSink:
    """
    Leveled logging with structured fields.

    Fields are appended to the message as key=value pairs and also attached
    to the record as ``fields`` for handlers that want them.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('snapvault')

    def _emit(self, level: int, message: str, fields: Optional[Dict[str, Any]], exc_info=None):
        self.logger.log(
            level,
            f"{message}{_format_fields(fields)}",
            extra={'fields': dict(fields or {})},
            exc_info=exc_info
        )

    def debug(self, message: str, fields: Optional[Dict[str, Any]] = None):
        self._emit(logging.DEBUG, message, fields)

    def info(self, message: str, fields: Optional[Dict[str, Any]] = None):
        self._emit(logging.INFO, message, fields)

    def warn(self, message: str, fields: Optional[Dict[str, Any]] = None):
        self._emit(logging.WARNING, message, fields)

    def error(self, message: str, fields: Optional[Dict[str, Any]] = None, exc_info=None):
        self._emit(logging.ERROR, message, fields, exc_info=exc_info)


class MetricsSink:
    """
    Records performance timings and exceptions.

    Thread-safe: retention sweeps report from worker threads.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('snapvault.metrics')
        self._lock = threading.Lock()
        self.durations: Dict[str, List[float]] = defaultdict(list)
        self.exceptions: List[Dict[str, str]] = []

    def track_duration(self, name: str, millis: float):
        with self._lock:
            self.durations[name].append(millis)
        self.logger.info(f"metric duration name={name} millis={millis:.0f}")

    def track_exception(self, err: BaseException):
        entry = {
            'type': type(err).__name__,
            'message': str(err),
            'traceback': ''.join(traceback.format_exception(type(err), err, err.__traceback__)),
        }
        with self._lock:
            self.exceptions.append(entry)
        self.logger.info(f"metric exception type={entry['type']} message={entry['message']}")
