import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from flask import Flask, current_app

from ghbackup.registry import Registry


REGISTRY_EXTENSION = 'ghbackup.registry'

CONSOLE_FORMAT = '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
FILE_FORMAT = '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'


def configure_logging(log_level=logging.INFO, log_dir: Optional[str] = None):
    """
    Configure process-wide logging.

    Always logs to the console; also logs to a rotating ghbackup.log when
    log_dir is given.

    Returns:
        List of handlers installed on the root logger
    """
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    handlers = [console_handler]

    # File handler
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'ghbackup.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Quiet noisy libs
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    return handlers


def get_registry() -> Registry:
    """Registry bound to the current Flask app."""
    return current_app.extensions[REGISTRY_EXTENSION]


def create_app(config_name=None, registry: Optional[Registry] = None, overrides: Optional[dict] = None):
    """
    Flask application factory.

    Args:
        config_name: Key into ghbackup.config.config (defaults to FLASK_ENV)
        registry: Pre-built registry; connects to REDIS_URL when omitted
        overrides: Config values taking precedence over the config class

    Raises:
        RegistryError: If the registry cannot be reached
    """
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from ghbackup.config import config
    app_config = config[config_name]

    settings = {key: getattr(app_config, key) for key in dir(app_config) if key.isupper()}
    settings.update(overrides or {})

    app = Flask(__name__, static_folder=settings['STATIC_DIR'], static_url_path='')
    app.config.update(settings)

    # Configure logging
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO
    if not app.config.get('TESTING', False):
        for handler in configure_logging(log_level, app.config.get('LOG_DIR')):
            app.logger.addHandler(handler)
        app.logger.setLevel(log_level)

    # Registry
    if registry is None:
        from ghbackup.registry import connect_registry
        registry = connect_registry(app.config['REDIS_URL'], app.config['NAMESPACE'])
    app.extensions[REGISTRY_EXTENSION] = registry

    # Register blueprints
    from ghbackup.routes import repos_routes, github_routes
    app.register_blueprint(repos_routes.bp)
    app.register_blueprint(github_routes.bp)

    from ghbackup.scheduler import init_scheduler, start_scheduler, stop_scheduler, is_scheduler_running, get_scheduled_jobs

    # Health check endpoint
    @app.route('/health')
    def health():
        return {
            'status': 'healthy',
            'scheduler': 'running' if is_scheduler_running() else 'stopped',
            'pending_jobs': len(get_scheduled_jobs())
        }, 200

    @app.route('/')
    def index():
        return app.send_static_file('index.html')

    # Background scheduler for discovery jobs (tests drive it directly)
    if not app.config.get('TESTING', False):
        import atexit

        init_scheduler(app)
        start_scheduler()
        atexit.register(stop_scheduler)
        app.logger.info("Scheduler initialized and started successfully")

    return app
