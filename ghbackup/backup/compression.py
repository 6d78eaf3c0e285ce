"""
Archive creation for repository backups.

Produces a tar.gz encoding of a directory tree:
- write_archive: core writer into any binary file object
- archive_directory: buffered variant returning the archive bytes
- stream_archive: streaming variant, a producer thread feeding an ArchiveStream

Entry metadata is normalized (fixed owner, zero mtime, permission bits only)
so identical trees always produce identical archives.
"""

import gzip
import io
import os
import queue
import stat
import tarfile
import threading
from typing import BinaryIO, Iterator, Optional, Tuple


ARCHIVE_UID = 1000
ARCHIVE_GID = 1000

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_MAX_CHUNKS = 16


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def _walk(root: str) -> Iterator[Tuple[str, os.stat_result]]:
    """
    Yield (path, stat) for every descendant of root.

    Entries are visited in lexical order, each directory before its contents.
    Links are followed for file entries but never descended into.
    """
    try:
        entries = sorted(os.scandir(root), key=lambda e: e.name)
    except OSError as e:
        raise CompressionError(f"Failed to list {root}: {e}")

    for entry in entries:
        try:
            info = os.stat(entry.path)
        except OSError as e:
            raise CompressionError(f"Failed to stat {entry.path}: {e}")

        if stat.S_ISDIR(info.st_mode) and entry.is_symlink():
            raise CompressionError(f"Unsupported entry (directory link): {entry.path}")
        if not (stat.S_ISDIR(info.st_mode) or stat.S_ISREG(info.st_mode)):
            raise CompressionError(f"Unsupported entry type: {entry.path}")

        yield entry.path, info

        if stat.S_ISDIR(info.st_mode):
            yield from _walk(entry.path)


def _entry_name(root: str, path: str) -> str:
    relative = path[len(root):] if path.startswith(root) else os.path.relpath(path, root)
    return relative.lstrip(os.sep).replace(os.sep, '/')


def _make_header(name: str, info: os.stat_result) -> tarfile.TarInfo:
    header = tarfile.TarInfo(name)
    header.mode = stat.S_IMODE(info.st_mode) & 0o777
    header.uid = ARCHIVE_UID
    header.gid = ARCHIVE_GID
    header.uname = ''
    header.gname = ''
    header.mtime = 0

    if stat.S_ISDIR(info.st_mode):
        header.type = tarfile.DIRTYPE
        header.size = 0
    else:
        header.type = tarfile.REGTYPE
        header.size = info.st_size

    return header


def write_archive(root: str, fileobj: BinaryIO):
    """
    Write a tar.gz archive of the tree under root into fileobj.

    The root entry itself is not archived. Both the tar and the gzip layer are
    finalized before returning; fileobj is left open.

    Args:
        root: Directory to archive
        fileobj: Writable binary file object receiving the compressed bytes

    Raises:
        CompressionError: If the tree cannot be walked, read or written
    """
    root = os.path.normpath(root)
    if not os.path.isdir(root):
        raise CompressionError(f"Not a directory: {root}")

    try:
        with gzip.GzipFile(filename='', mode='wb', fileobj=fileobj, mtime=0) as gz:
            with tarfile.open(fileobj=gz, mode='w|') as tar:
                for path, info in _walk(root):
                    header = _make_header(_entry_name(root, path), info)

                    if header.isdir():
                        tar.addfile(header)
                        continue

                    with open(path, 'rb') as f:
                        tar.addfile(header, f)
    except CompressionError:
        raise
    except Exception as e:
        raise CompressionError(f"Failed to archive {root}: {e}")


def archive_directory(root: str) -> bytes:
    """
    Archive the tree under root into memory.

    Args:
        root: Directory to archive

    Returns:
        The complete tar.gz archive

    Raises:
        CompressionError: If archive creation fails
    """
    buffer = io.BytesIO()
    write_archive(root, buffer)
    return buffer.getvalue()


class _EndOfStream:
    """Queue sentinel, carries the producer's error if it failed."""

    def __init__(self, error: Optional[BaseException] = None):
        self.error = error


class _ChunkWriter:
    """Write side of an ArchiveStream; blocks while the queue is full."""

    def __init__(self, chunks: queue.Queue, cancelled: threading.Event, chunk_size: int):
        self._chunks = chunks
        self._cancelled = cancelled
        self._chunk_size = chunk_size
        self._pending = bytearray()

    def _put(self, chunk: bytes):
        while True:
            if self._cancelled.is_set():
                raise CompressionError("Archive stream closed by consumer")
            try:
                self._chunks.put(chunk, timeout=0.1)
                return
            except queue.Full:
                continue

    def write(self, data) -> int:
        self._pending += data
        while len(self._pending) >= self._chunk_size:
            self._put(bytes(self._pending[:self._chunk_size]))
            del self._pending[:self._chunk_size]
        return len(data)

    def flush(self):
        if self._pending:
            self._put(bytes(self._pending))
            self._pending.clear()


class ArchiveStream(io.RawIOBase):
    """
    Single-consumer readable stream of a tar.gz archive.

    A background thread walks the tree and pushes compressed chunks into a
    bounded queue; read() pulls them. Memory use is bounded by the queue, not by
    the size of the tree. If the producer fails, read() raises CompressionError
    once the chunks produced before the failure have been consumed.
    """

    def __init__(self, root: str, chunk_size: int = DEFAULT_CHUNK_SIZE, max_chunks: int = DEFAULT_MAX_CHUNKS):
        super().__init__()
        self.root = root
        self._chunks = queue.Queue(maxsize=max_chunks)
        self._cancelled = threading.Event()
        self._buffer = b''
        self._finished = False
        self._chunk_size = chunk_size
        self._producer = threading.Thread(
            target=self._produce,
            name=f"archive-{os.path.basename(root)}",
            daemon=True
        )
        self._producer.start()

    def _produce(self):
        writer = _ChunkWriter(self._chunks, self._cancelled, self._chunk_size)
        error = None
        try:
            write_archive(self.root, writer)
            writer.flush()
        except BaseException as e:
            error = e

        if self._cancelled.is_set():
            return

        while True:
            try:
                self._chunks.put(_EndOfStream(error), timeout=0.1)
                return
            except queue.Full:
                if self._cancelled.is_set():
                    return

    def readable(self):
        return True

    def _next_chunk(self) -> bytes:
        item = self._chunks.get()
        if isinstance(item, _EndOfStream):
            self._finished = True
            if item.error is not None:
                if isinstance(item.error, CompressionError):
                    raise item.error
                raise CompressionError(f"Archive producer failed: {item.error}")
            return b''
        return item

    def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed archive stream")

        if size is None or size < 0:
            parts = [self._buffer]
            self._buffer = b''
            while not self._finished:
                parts.append(self._next_chunk())
            return b''.join(parts)

        while not self._buffer and not self._finished:
            self._buffer = self._next_chunk()

        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def readinto(self, b) -> int:
        data = self.read(len(b))
        b[:len(data)] = data
        return len(data)

    def close(self):
        """Cancel the producer if still running and wait for it to stop."""
        if self.closed:
            return
        self._cancelled.set()
        while True:
            try:
                self._chunks.get_nowait()
            except queue.Empty:
                break
        self._producer.join()
        super().close()


def stream_archive(root: str, chunk_size: int = DEFAULT_CHUNK_SIZE, max_chunks: int = DEFAULT_MAX_CHUNKS) -> ArchiveStream:
    """
    Start archiving the tree under root in the background.

    Args:
        root: Directory to archive
        chunk_size: Size of the chunks handed from producer to consumer
        max_chunks: Number of chunks buffered before the producer blocks

    Returns:
        ArchiveStream to read the compressed archive from; close it (or use it
        as a context manager) to release the producer thread
    """
    if not os.path.isdir(root):
        raise CompressionError(f"Not a directory: {root}")
    return ArchiveStream(root, chunk_size=chunk_size, max_chunks=max_chunks)
