import os
import re
import tempfile
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional


DEFAULT_NAMESPACE = 'github-backup'
DEFAULT_FREQUENCY = '24h'

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|s|m|h|d)')
_DURATION_UNITS = {
    'ms': timedelta(milliseconds=1),
    's': timedelta(seconds=1),
    'm': timedelta(minutes=1),
    'h': timedelta(hours=1),
    'd': timedelta(days=1),
}


def parse_duration(text: str) -> timedelta:
    """
    Parse a Go-style duration string into a timedelta.

    Accepts one or more <number><unit> parts, e.g. '90s', '30m', '24h', '1h30m', '7d'.
    A bare number is read as seconds.

    Args:
        text: Duration string

    Returns:
        Parsed duration

    Raises:
        ValueError: If the string is empty, malformed or not positive
    """
    value = (text or '').strip().lower()
    if not value:
        raise ValueError("Empty duration")

    if re.fullmatch(r'\d+(?:\.\d+)?', value):
        duration = timedelta(seconds=float(value))
    else:
        position = 0
        duration = timedelta()
        for match in _DURATION_PART.finditer(value):
            if match.start() != position:
                break
            duration += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            position = match.end()
        if position != len(value):
            raise ValueError(f"Invalid duration: {text}")

    if duration <= timedelta():
        raise ValueError(f"Duration must be positive: {text}")
    return duration


def _env_float(name: str) -> Optional[float]:
    value = os.environ.get(name)
    return float(value) if value else None


class Config:
    """Base configuration"""

    # Registry (Redis)
    REDIS_URL = os.environ.get('REDIS_URL', '')
    NAMESPACE = os.environ.get('NAMESPACE') or DEFAULT_NAMESPACE

    # Downloader
    FTP_URL = os.environ.get('FTP_URL', '')
    BACKUP_FREQUENCY = os.environ.get('BACKUP_FREQUENCY') or DEFAULT_FREQUENCY
    FORCE_BACKUP = os.environ.get('FORCE_BACKUP', 'false').lower() == 'true'
    SSH_KEY = os.environ.get('SSH_KEY', '')
    TEMP_DIR = os.environ.get('TEMP_DIR') or tempfile.gettempdir()
    CLONE_TIMEOUT = _env_float('CLONE_TIMEOUT')
    FTP_TIMEOUT = _env_float('FTP_TIMEOUT')

    # GitHub OAuth app
    GITHUB_CLIENT_ID = os.environ.get('GITHUB_CLIENT_ID', '')
    GITHUB_CLIENT_SECRET = os.environ.get('GITHUB_CLIENT_SECRET', '')
    PUBLIC_URL = os.environ.get('PUBLIC_URL', 'http://localhost:8080')

    # Frontend
    STATIC_DIR = os.environ.get('STATIC_DIR') or os.path.abspath(
        os.path.join(os.path.dirname(os.path.dirname(__file__)), 'static')
    )

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or None

    # Scheduler
    SCHEDULER_TIMEZONE = 'UTC'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    LOG_DIR = os.path.join(BASE_DIR, 'data', 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    DEBUG = False
    TESTING = True
    LOG_DIR = None
    GITHUB_CLIENT_ID = 'test-client-id'
    GITHUB_CLIENT_SECRET = 'test-client-secret'
    PUBLIC_URL = 'http://backup.example.com'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


@dataclass
class DownloaderSettings:
    """Settings for the backup daemon, resolved once at startup.

    Attributes:
        redis_url: Registry locator (redis://[user[:pass]@]host[:port]).
        ftp_url: Upload target (ftp://[user[:pass]@]host[:port]/path).
        frequency: Minimum time between two completed cycles.
        force: Run a cycle immediately on startup regardless of the last run.
        namespace: Key prefix for everything the registry stores.
        ssh_key: Optional base64 encoded private key handed to ssh-agent.
        temp_dir: Parent directory for clone workspaces.
        clone_timeout: Seconds a single clone may take, None for no limit.
        ftp_timeout: Socket timeout for the FTP session, None for no limit.
    """

    redis_url: str
    ftp_url: str
    frequency: timedelta = timedelta(hours=24)
    force: bool = False
    namespace: str = DEFAULT_NAMESPACE
    ssh_key: str = ''
    temp_dir: Optional[str] = None
    clone_timeout: Optional[float] = None
    ftp_timeout: Optional[float] = None

    def validate(self):
        """Raise ValueError for settings the daemon cannot start with."""
        missing = [flag for flag, value in (('--redis', self.redis_url), ('--ftp', self.ftp_url)) if not value]
        if missing:
            raise ValueError(f"{' and '.join(missing)} have to be set")
        if not self.namespace:
            raise ValueError("Namespace must not be empty")
        if self.frequency <= timedelta():
            raise ValueError("Frequency must be positive")
