"""
Storage handler for backup archives.

FTPStorage keeps one FTP session open, changed into the target directory, and
stores each archive under a filesystem-safe name derived from the repository:
{target_dir}/{sanitized_ref}.tar.gz

Uploads land in {sanitized_ref}.tar.gz.part first and are renamed on success.
"""

import ftplib
import logging
import re
from typing import BinaryIO, Optional
from urllib.parse import unquote, urlsplit


logger = logging.getLogger(__name__)

DEFAULT_FTP_PORT = 21
ARCHIVE_EXTENSION = '.tar.gz'
PARTIAL_SUFFIX = '.part'

_UNSAFE_CHARACTERS = re.compile(r'[/@:!?*&\\]')


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


def sanitize_name(ref: str) -> str:
    """
    Derive the archive filename for a repository reference.

    Every '/', '@', ':', '!', '?', '*', '&' and '\\' becomes '_'. Distinct refs
    differing only in those characters map to the same name.

    Args:
        ref: Repository clone URL

    Returns:
        Filename ending in .tar.gz
    """
    return _UNSAFE_CHARACTERS.sub('_', ref) + ARCHIVE_EXTENSION


class FTPStorage:
    """
    Handler for uploading backups to an FTP server.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_FTP_PORT,
        username: Optional[str] = None,
        password: str = '',
        directory: str = '',
        timeout: Optional[float] = None
    ):
        """
        Initialize FTP storage handler.

        Args:
            host: FTP server hostname
            port: FTP server port (default: 21)
            username: Login user (None skips login)
            password: Login password (may be empty)
            directory: Directory to change into after login
            timeout: Socket timeout in seconds (None for no limit)
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.directory = directory
        self.timeout = timeout
        self.ftp = None

    @classmethod
    def from_url(cls, url: str, timeout: Optional[float] = None) -> 'FTPStorage':
        """
        Create a handler from an ftp://[user[:pass]@]host[:port]/path URL.

        Raises:
            StorageError: If the URL is malformed or not an ftp URL
        """
        try:
            parts = urlsplit(url)
            port = parts.port
        except ValueError as e:
            raise StorageError(f"Invalid ftp url: {e}")

        if parts.scheme != 'ftp':
            raise StorageError(f"Unsupported target scheme {parts.scheme or '(none)'}")
        if not parts.hostname:
            raise StorageError(f"Missing host in ftp url: {url}")

        return cls(
            host=parts.hostname,
            port=port or DEFAULT_FTP_PORT,
            username=unquote(parts.username) if parts.username is not None else None,
            password=unquote(parts.password or ''),
            directory=unquote(parts.path),
            timeout=timeout
        )

    def connect(self):
        """
        Open the session: connect, log in if credentials are present, cd to target.

        Raises:
            StorageError: If any step fails
        """
        self.close()

        if self.timeout is None:
            ftp = ftplib.FTP()
        else:
            ftp = ftplib.FTP(timeout=self.timeout)

        try:
            ftp.connect(self.host, self.port)
            if self.username is not None:
                ftp.login(self.username, self.password)
            if self.directory:
                ftp.cwd(self.directory)
        except ftplib.all_errors as e:
            try:
                ftp.close()
            except OSError:
                pass
            raise StorageError(f"FTP connection to {self.host}:{self.port} failed: {e}")

        self.ftp = ftp
        logger.info(f"Connected to ftp://{self.host}:{self.port}{self.directory}")

    def _ensure_connected(self):
        """Reopen the session if it was never opened or has been dropped."""
        if self.ftp is not None:
            try:
                self.ftp.voidcmd('NOOP')
                return
            except ftplib.all_errors as e:
                logger.info(f"FTP session lost ({e}), reconnecting")
                self.close()
        self.connect()

    def store(self, name: str, stream: BinaryIO) -> str:
        """
        Upload a stream under name in the target directory, overwriting.

        The data is written to name + '.part' and renamed to name only after the
        transfer completed, so a failed upload never replaces an existing archive.

        Args:
            name: Remote filename
            stream: Readable binary stream, consumed until EOF

        Returns:
            Remote filename

        Raises:
            StorageError: If the upload fails
        """
        self._ensure_connected()
        partial = name + PARTIAL_SUFFIX

        try:
            self.ftp.storbinary(f'STOR {partial}', stream)
            self.ftp.rename(partial, name)
            return name
        except ftplib.all_errors as e:
            self._discard(partial)
            raise StorageError(f"FTP upload of {name} failed: {e}")
        except Exception:
            # Errors raised by the stream itself keep their type
            self._discard(partial)
            raise

    def _discard(self, partial: str):
        """Best-effort removal of an incomplete upload on a fresh session."""
        # Control connection state is unknown after a failed transfer
        self.close()
        try:
            self.connect()
            self.ftp.delete(partial)
        except (StorageError, *ftplib.all_errors) as e:
            logger.warning(f"Failed to remove incomplete upload {partial}: {e}")
            self.close()

    def test_connection(self) -> bool:
        """
        Test FTP connectivity and target directory access.

        Returns:
            True if connection is successful

        Raises:
            StorageError: If connection test fails
        """
        self._ensure_connected()
        return True

    def close(self):
        """Close the session, politely if possible."""
        if self.ftp is None:
            return
        ftp, self.ftp = self.ftp, None
        try:
            ftp.quit()
        except ftplib.all_errors:
            ftp.close()
