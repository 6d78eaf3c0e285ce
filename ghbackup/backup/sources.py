"""
Repository acquisition for backup operations.

- workspace: exclusive temporary directory, removed on every exit path
- clone_repository: bare clone of one repository into a workspace
- add_ssh_key: hand a private key to the running ssh-agent for clone auth
"""

import base64
import binascii
import logging
import os
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from typing import Iterator, Optional


logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = 'ghbackup-'


class SourceError(Exception):
    """Raised when repository acquisition fails."""
    pass


@contextmanager
def workspace(temp_dir: Optional[str] = None) -> Iterator[str]:
    """
    Create an exclusive workspace directory and remove it on exit.

    Args:
        temp_dir: Parent directory (defaults to the system temp dir)

    Yields:
        Path of the new, empty workspace

    Raises:
        SourceError: If the directory cannot be created
    """
    try:
        path = tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=temp_dir)
    except OSError as e:
        raise SourceError(f"Failed to create workspace: {e}")

    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(f"Failed to remove workspace {path}: {e}")


def clone_repository(ref: str, workspace_path: str, timeout: Optional[float] = None) -> str:
    """
    Bare-clone a repository into the workspace.

    Args:
        ref: Clone URL of the repository (ssh or https)
        workspace_path: Empty directory to clone into
        timeout: Seconds the clone may take (None for no limit)

    Returns:
        Path of the bare repository directory created by git

    Raises:
        SourceError: If the clone fails for any reason
    """
    if not ref or not ref.strip():
        raise SourceError("Repository reference is empty")

    env = os.environ.copy()
    env['GIT_TERMINAL_PROMPT'] = '0'

    try:
        subprocess.run(
            ['git', 'clone', '--bare', '--quiet', ref],
            cwd=workspace_path,
            env=env,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout
        )
    except FileNotFoundError:
        raise SourceError("git executable not found")
    except subprocess.TimeoutExpired:
        raise SourceError(f"Clone of {ref} timed out after {timeout}s")
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or '').strip()
        raise SourceError(f"Clone of {ref} failed (exit {e.returncode}): {stderr}")

    clones = [
        entry.path for entry in os.scandir(workspace_path)
        if entry.is_dir(follow_symlinks=False)
    ]
    if len(clones) != 1:
        raise SourceError(f"Expected one bare repository in {workspace_path}, found {len(clones)}")

    return clones[0]


def add_ssh_key(encoded_key: str):
    """
    Add a base64 encoded private key to the ssh-agent.

    Args:
        encoded_key: Base64 encoding of the private key file

    Raises:
        SourceError: If the key cannot be decoded or ssh-add rejects it
    """
    try:
        key = base64.b64decode(encoded_key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SourceError(f"SSH key is not valid base64: {e}")

    try:
        subprocess.run(
            ['ssh-add', '-'],
            input=key,
            check=True,
            capture_output=True
        )
    except FileNotFoundError:
        raise SourceError("ssh-add executable not found")
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b'').decode('utf-8', 'replace').strip()
        raise SourceError(f"ssh-add failed (exit {e.returncode}): {stderr}")
