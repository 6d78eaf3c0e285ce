"""
Backup module for ghbackup.

This module handles the per-repository backup pipeline:
- Source acquisition (bare git clone into a temporary workspace)
- Compression (streamed tar.gz)
- Storage (FTP)
- Execution orchestration
"""

from .executor import BackupExecutor
from .sources import clone_repository, workspace, SourceError
from .compression import archive_directory, stream_archive, CompressionError
from .storage import FTPStorage, sanitize_name, StorageError

__all__ = [
    'BackupExecutor',
    'clone_repository',
    'workspace',
    'archive_directory',
    'stream_archive',
    'FTPStorage',
    'sanitize_name',
    'SourceError',
    'CompressionError',
    'StorageError'
]
