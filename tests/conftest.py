"""
Shared pytest fixtures for ghbackup tests.

This module provides fixtures for:
- Flask app and test client
- In-memory Redis stand-in and registry
- Repository trees for archive tests
- Mock fixtures for external services (FTP, APScheduler)
"""

import os
from unittest.mock import MagicMock, patch

import pytest

from ghbackup import create_app
from ghbackup.registry import Registry


class FakeRedis:
    """
    Minimal in-memory implementation of the Redis commands the registry uses.
    """

    def __init__(self):
        self.strings = {}
        self.sets = {}
        self.closed = False

    def get(self, key):
        return self.strings.get(key)

    def set(self, key, value):
        self.strings[key] = value
        return True

    def exists(self, *keys):
        return sum(1 for key in keys if key in self.strings or key in self.sets)

    def sadd(self, key, *values):
        members = self.sets.setdefault(key, set())
        added = len(set(values) - members)
        members.update(values)
        return added

    def srem(self, key, *values):
        members = self.sets.get(key, set())
        removed = len(members & set(values))
        members.difference_update(values)
        return removed

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def close(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    """In-memory Redis stand-in."""
    return FakeRedis()


@pytest.fixture
def registry(fake_redis):
    """Registry over the in-memory store, default namespace."""
    return Registry(fake_redis)


@pytest.fixture(scope='function')
def app(registry, tmp_path):
    """
    Create Flask app with test configuration.

    Uses the in-memory registry; the background scheduler is not started.
    """
    static_dir = tmp_path / 'static'
    static_dir.mkdir()
    (static_dir / 'index.html').write_text('<html>ghbackup</html>')

    app = create_app('testing', registry=registry, overrides={'STATIC_DIR': str(static_dir)})

    yield app


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def repo_tree(tmp_path):
    """
    Create a small directory tree.

    Creates:
    - a.txt      ("hello", mode 0644)
    - b/         (directory)
    - b/c.txt    ("world")
    """
    root = tmp_path / 'tree'
    root.mkdir()

    a = root / 'a.txt'
    a.write_text('hello')
    os.chmod(a, 0o644)

    b = root / 'b'
    b.mkdir()
    os.chmod(b, 0o755)

    c = b / 'c.txt'
    c.write_text('world')
    os.chmod(c, 0o600)

    return root


@pytest.fixture
def mock_ftp():
    """
    Mock ftplib.FTP as used by the storage handler.

    Yields the mock FTP instance. `uploads` on the instance is the remote
    directory: storbinary writes into it as the stream is read (like a server
    keeping whatever arrived before the data connection closed), rename and
    delete act on it.
    """
    with patch('ghbackup.backup.storage.ftplib.FTP') as mock_ftp_class:
        ftp = MagicMock()
        ftp.uploads = {}

        def storbinary(cmd, fp, *args, **kwargs):
            name = cmd.split(' ', 1)[1]
            ftp.uploads[name] = b''
            while True:
                data = fp.read(8192)
                if not data:
                    break
                ftp.uploads[name] += data
            return '226 Transfer complete'

        def rename(source, target):
            ftp.uploads[target] = ftp.uploads.pop(source)
            return '250 Rename successful'

        def delete(name):
            ftp.uploads.pop(name, None)
            return '250 Delete successful'

        ftp.storbinary.side_effect = storbinary
        ftp.rename.side_effect = rename
        ftp.delete.side_effect = delete
        mock_ftp_class.return_value = ftp
        ftp.factory = mock_ftp_class

        yield ftp


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('ghbackup.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
