import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask


CONSOLE_FORMAT = '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
FILE_FORMAT = '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'


def configure_logging(log_level='INFO', log_dir=None, app=None):
    """
    Configure application logging.

    Console output always; a rotating file in log_dir when one is given.
    Used both by the one-shot CLI and by the status API.
    """
    level = logging.getLevelName(str(log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    handlers = [console_handler]

    # File handler
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'snapvault.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=level, handlers=handlers, force=True)

    # Configure Flask app logger
    if app is not None:
        app.logger.setLevel(level)

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(level)})")


def create_app(config_name=None, settings=None):
    """
    Flask application factory for the status API.

    Args:
        config_name: Key of snapvault.config.config (default: FLASK_ENV or production)
        settings: BackupSettings to serve (default: read from the environment)
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from snapvault.config import config, BackupSettings
    app.config.from_object(config[config_name])
    app.config['BACKUP_SETTINGS'] = settings or BackupSettings.from_env()

    # Configure logging
    if not app.config.get('TESTING'):
        configure_logging(app.config['LOG_LEVEL'], app.config.get('LOG_DIR'), app)

    from snapvault.routes import backup_routes
    app.register_blueprint(backup_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    if not app.config.get('SCHEDULER_ENABLED', False):
        app.logger.info("Scheduler disabled by configuration")
        return app

    # Initialize and start scheduler (only in designated worker or development child process)
    from snapvault.scheduler import init_scheduler, start_scheduler, stop_scheduler
    import atexit

    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)
    is_scheduler_worker = os.environ.get('SCHEDULER_WORKER', 'true').lower() == 'true'

    # Development: only the reloader child; production: only the designated gunicorn worker
    if is_development:
        should_init_scheduler = is_reloader_child
    else:
        should_init_scheduler = is_scheduler_worker

    if should_init_scheduler:
        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app)
        start_scheduler()
        atexit.register(stop_scheduler)
    else:
        app.logger.info("Scheduler initialization skipped in this process (not designated scheduler worker)")

    return app
