"""
Backup executor - runs the per-repository backup workflow.

Workflow for one repository:
1. Create a temporary workspace
2. Bare-clone the repository into it
3. Stream a tar.gz archive of the workspace (the clone directory and its contents)
4. Upload the stream to FTP under the sanitized repository name
5. Remove the workspace (always, also on failure)

A cycle runs this workflow for every enrolled repository; a failure in one
repository is logged and never stops the others.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from .compression import stream_archive
from .sources import clone_repository, workspace
from .storage import FTPStorage, sanitize_name


logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Orchestrates fetch -> archive -> upload for repositories.
    """

    def __init__(self, storage: FTPStorage, temp_dir: Optional[str] = None, clone_timeout: Optional[float] = None):
        """
        Initialize backup executor.

        Args:
            storage: Open upload session shared by all repositories of a cycle
            temp_dir: Parent directory for clone workspaces
            clone_timeout: Seconds a single clone may take
        """
        self.storage = storage
        self.temp_dir = temp_dir
        self.clone_timeout = clone_timeout

    def backup_repository(self, ref: str) -> str:
        """
        Back up a single repository.

        Args:
            ref: Repository clone URL

        Returns:
            Remote filename of the uploaded archive

        Raises:
            SourceError, CompressionError, StorageError: On failure of the matching stage
        """
        name = sanitize_name(ref)
        started = time.monotonic()

        with workspace(self.temp_dir) as workspace_path:
            logger.debug(f"Cloning {ref} into {workspace_path}")
            repo_path = clone_repository(ref, workspace_path, timeout=self.clone_timeout)

            # The workspace holds only the bare clone, so entries are <repo>.git/...
            logger.debug(f"Archiving {repo_path} as {name}")
            with stream_archive(workspace_path) as archive:
                self.storage.store(name, archive)

        logger.info(f"Backed up {ref} as {name} ({time.monotonic() - started:.1f}s)")
        return name

    def run_cycle(self, refs: Iterable[str]) -> Dict[str, Any]:
        """
        Back up every repository in refs, one after another.

        Args:
            refs: Repository clone URLs

        Returns:
            Dict with summary of the cycle:
            {
                'repositories': int,
                'uploaded': List[str],
                'failed': Dict[str, str],
                'finished_at': datetime
            }
        """
        refs = sorted(set(refs))
        summary = {
            'repositories': len(refs),
            'uploaded': [],
            'failed': {},
            'finished_at': None
        }

        logger.info(f"Backing up {len(refs)} repositories")

        for ref in refs:
            logger.info(f"Downloading {ref}...")
            try:
                self.backup_repository(ref)
                summary['uploaded'].append(ref)
            except Exception as e:
                logger.error(f"Backup of {ref} failed: {e}")
                summary['failed'][ref] = str(e)

        summary['finished_at'] = datetime.now(timezone.utc)
        logger.info(
            f"Cycle finished: {len(summary['uploaded'])} uploaded, "
            f"{len(summary['failed'])} failed"
        )
        return summary
