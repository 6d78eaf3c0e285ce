"""
Command line entry points.

ghbackup-downloader  backup daemon (clone, archive, upload on a schedule)
ghbackup-frontend    web interface for enrolling and discovering repositories
"""

import argparse
import logging
import os
import signal
import sys
from typing import Optional

from gunicorn.app.base import BaseApplication

from ghbackup import configure_logging, gunicorn_conf
from ghbackup.backup.executor import BackupExecutor
from ghbackup.backup.sources import SourceError, add_ssh_key
from ghbackup.backup.storage import FTPStorage, StorageError
from ghbackup.config import Config, DownloaderSettings, parse_duration
from ghbackup.daemon import BackupDaemon
from ghbackup.registry import RegistryError, connect_registry


logger = logging.getLogger(__name__)


def _duration(text):
    try:
        return parse_duration(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_downloader_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ghbackup-downloader',
        description='Periodically back up enrolled git repositories to an FTP server.'
    )
    parser.add_argument('--redis', default=Config.REDIS_URL, help='Address of redis (redis://[user[:pass]@]host[:port])')
    parser.add_argument('--ftp', default=Config.FTP_URL, help='FTP server to save backups to (ftp://[user[:pass]@]host[:port]/path)')
    parser.add_argument('--frequency', type=_duration, default=Config.BACKUP_FREQUENCY, help='Frequency of backups (e.g. 24h, 1h30m)')
    parser.add_argument('--force', action='store_true', default=Config.FORCE_BACKUP, help='Run a backup immediately')
    parser.add_argument('--key', default=Config.SSH_KEY, help='Base64 encoded SSH key to use for cloning')
    parser.add_argument('--namespace', default=Config.NAMESPACE, help='Database namespace')
    parser.add_argument('--temp-dir', default=Config.TEMP_DIR, help='Directory for clone workspaces')
    parser.add_argument('--clone-timeout', type=float, default=Config.CLONE_TIMEOUT, help='Seconds a single clone may take')
    parser.add_argument('--ftp-timeout', type=float, default=Config.FTP_TIMEOUT, help='FTP socket timeout in seconds')
    parser.add_argument('--log-level', default=os.environ.get('LOG_LEVEL', 'INFO'), help='Logging level')
    parser.add_argument('--log-dir', default=Config.LOG_DIR, help='Also write rotating logs to this directory')
    return parser


def settings_from_args(args: argparse.Namespace) -> DownloaderSettings:
    frequency = args.frequency
    if isinstance(frequency, str):
        frequency = parse_duration(frequency)

    return DownloaderSettings(
        redis_url=args.redis,
        ftp_url=args.ftp,
        frequency=frequency,
        force=args.force,
        namespace=args.namespace,
        ssh_key=args.key,
        temp_dir=args.temp_dir,
        clone_timeout=args.clone_timeout,
        ftp_timeout=args.ftp_timeout
    )


def build_daemon(settings: DownloaderSettings) -> BackupDaemon:
    """
    Wire up the daemon from settings, checking every external dependency.

    Raises:
        ValueError, SourceError, RegistryError, StorageError: On any startup failure
    """
    settings.validate()

    if settings.ssh_key:
        add_ssh_key(settings.ssh_key)
        logger.info("SSH key added to agent")

    registry = connect_registry(settings.redis_url, settings.namespace)

    storage = FTPStorage.from_url(settings.ftp_url, timeout=settings.ftp_timeout)
    storage.connect()

    executor = BackupExecutor(storage, temp_dir=settings.temp_dir, clone_timeout=settings.clone_timeout)
    return BackupDaemon(registry, executor, settings.frequency, force=settings.force)


def downloader_main(argv=None) -> int:
    args = build_downloader_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_dir)

    try:
        daemon = build_daemon(settings_from_args(args))
    except (ValueError, SourceError, RegistryError, StorageError) as e:
        logger.critical(f"Startup failed: {e}")
        return 1

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        daemon.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        daemon.run_forever()
    except RegistryError as e:
        logger.critical(f"Registry failure: {e}")
        return 1
    finally:
        daemon.executor.storage.close()
        daemon.registry.close()

    return 0


def build_frontend_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ghbackup-frontend',
        description='Web interface to enroll repositories and import them from GitHub.'
    )
    parser.add_argument('--listen', default=os.environ.get('LISTEN', 'localhost:8080'), help='Address to bind webserver to')
    parser.add_argument('--id', default=Config.GITHUB_CLIENT_ID, help='Client ID of GitHub OAuth app')
    parser.add_argument('--secret', default=Config.GITHUB_CLIENT_SECRET, help='Client secret of GitHub OAuth app')
    parser.add_argument('--public', default=Config.PUBLIC_URL, help='Public URL of the app')
    parser.add_argument('--redis', default=Config.REDIS_URL, help='Address of redis')
    parser.add_argument('--static', default=Config.STATIC_DIR, help='Path to static files')
    parser.add_argument('--namespace', default=Config.NAMESPACE, help='Database namespace')
    parser.add_argument('--env', default=os.environ.get('FLASK_ENV', 'production'), choices=['development', 'production'])
    parser.add_argument('--threads', type=int, default=gunicorn_conf.threads, help='Request threads of the web worker')
    return parser


def _split_listen(listen: str):
    host, _, port = listen.rpartition(':')
    if not host or not port.isdigit():
        raise ValueError(f"Invalid listen address: {listen}")
    return host, int(port)


class FrontendApplication(BaseApplication):
    """
    Gunicorn application serving the frontend.

    Settings come from ghbackup.gunicorn_conf, then from options. The Flask app
    is built inside the worker so that its scheduler thread lives there.
    """

    def __init__(self, config_name: str, overrides: dict, options: Optional[dict] = None):
        self.config_name = config_name
        self.overrides = overrides
        self.options = options or {}
        super().__init__()

    def load_config(self):
        settings = {key: getattr(gunicorn_conf, key) for key in dir(gunicorn_conf) if not key.startswith('_')}
        settings.update(self.options)
        for key, value in settings.items():
            if key in self.cfg.settings and value is not None:
                self.cfg.set(key, value)

    def load(self):
        from ghbackup import create_app
        return create_app(self.config_name, overrides=self.overrides)


def frontend_main(argv=None) -> int:
    args = build_frontend_parser().parse_args(argv)
    configure_logging()

    if not args.redis:
        logger.critical("--redis has to be set")
        return 1

    try:
        _split_listen(args.listen)
        # Fail fast on an unreachable store before any worker is forked
        connect_registry(args.redis, args.namespace).close()
    except (ValueError, RegistryError) as e:
        logger.critical(f"Startup failed: {e}")
        return 1

    overrides = {
        'REDIS_URL': args.redis,
        'NAMESPACE': args.namespace,
        'STATIC_DIR': os.path.abspath(args.static),
        'GITHUB_CLIENT_ID': args.id,
        'GITHUB_CLIENT_SECRET': args.secret,
        'PUBLIC_URL': args.public,
    }

    logger.info(f"Starting webserver on {args.listen}...")
    FrontendApplication(args.env, overrides, {'bind': args.listen, 'threads': args.threads}).run()
    return 0


def main_downloader():
    sys.exit(downloader_main())


def main_frontend():
    sys.exit(frontend_main())
