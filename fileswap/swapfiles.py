"""The set of files on disk that back the swap space."""

from __future__ import annotations

import errno
import logging
import mmap
import os
import shutil
import threading
from dataclasses import dataclass
from typing import List

from .pagefile import SwapError

logger = logging.getLogger(__name__)

_O_DIRECT = getattr(os, "O_DIRECT", 0)
_O_BINARY = getattr(os, "O_BINARY", 0)


@dataclass
class _SwapFile:
    fd: int
    name: str
    size: int = 0


class SwapFiles:
    """Numbered swap files named from a mask holding the process id and index.

    The mask is a printf-style pattern with two ``%d`` fields, for example
    ``"/tmp/swap-%d-%d"``.  With ``direct`` the files are opened for direct
    I/O where the platform and file system allow it; when the file system
    refuses, direct I/O is switched off and ``direct`` reads False.
    """

    def __init__(self, filemask: str, direct: bool = False) -> None:
        self.filemask = filemask
        self.direct = bool(direct and _O_DIRECT)
        if direct and not _O_DIRECT:
            logger.warning("Direct I/O is not available on this platform")
        self._files: List[_SwapFile] = []
        self._lock = threading.Lock()
        self.file_name(0)

    def __len__(self) -> int:
        return len(self._files)

    def __enter__(self) -> SwapFiles:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def file_name(self, index: int) -> str:
        """Return the path of swap file number ``index`` for this process."""
        try:
            return self.filemask % (os.getpid(), index)
        except (TypeError, ValueError) as exc:
            raise SwapError(f"Invalid swap file mask {self.filemask!r}") from exc

    def _open(self, name: str) -> int:
        flags = os.O_RDWR | os.O_TRUNC | os.O_CREAT | _O_BINARY
        if self.direct:
            flags |= _O_DIRECT
        return os.open(name, flags, 0o600)

    def open_range(self, start: int, stop: int) -> None:
        """Create and open swap files ``start`` up to ``stop``."""
        if start != len(self._files) or stop < start:
            raise ValueError(f"files must be opened after file {len(self._files)}")
        for index in range(start, stop):
            name = self.file_name(index)
            try:
                fd = self._open(name)
            except OSError as exc:
                if exc.errno == errno.EINVAL and index == 0 and self.direct:
                    logger.warning(
                        "Could not open first swapfile. Probably DMA is not "
                        "supported on underlying filesystem. Trying again without dma"
                    )
                    self.direct = False
                    try:
                        fd = self._open(name)
                    except OSError as retry_exc:
                        raise SwapError("Could not open swap file.") from retry_exc
                else:
                    logger.error(
                        "Encountered error code %s when opening file %s", exc.errno, name
                    )
                    raise SwapError("Could not open swap file.") from exc
            self._files.append(_SwapFile(fd, name))

    def _file(self, index: int) -> _SwapFile:
        if not 0 <= index < len(self._files):
            raise IndexError(f"no swap file with index {index}")
        return self._files[index]

    def ensure_size(self, index: int, needed: int) -> int:
        """Grow swap file ``index`` to at least ``needed`` bytes; return its size."""
        desc = self._file(index)
        if needed > desc.size:
            try:
                os.ftruncate(desc.fd, needed)
            except OSError as exc:
                logger.error("Could not resize swap file with error code %s", exc.errno)
                raise SwapError("Could not resize swap file") from exc
            desc.size = needed
        return desc.size

    def _pwrite(self, fd: int, data: object, offset: int) -> int:
        if hasattr(os, "pwrite"):
            return os.pwrite(fd, data, offset)
        with self._lock:
            os.lseek(fd, offset, os.SEEK_SET)
            return os.write(fd, data)

    def _pread(self, fd: int, length: int, offset: int) -> bytes:
        if hasattr(os, "pread"):
            return os.pread(fd, length, offset)
        with self._lock:
            os.lseek(fd, offset, os.SEEK_SET)
            return os.read(fd, length)

    def write(self, index: int, offset: int, data: bytes) -> int:
        """Write ``data`` at ``offset`` of swap file ``index``; return bytes written."""
        desc = self._file(index)
        if not data:
            return 0
        if self.direct:
            buffer = mmap.mmap(-1, len(data))
            buffer[:] = bytes(data)
            return os.pwrite(desc.fd, buffer, offset)
        view = memoryview(data)
        written = 0
        while written < len(view):
            count = self._pwrite(desc.fd, view[written:], offset + written)
            if count == 0:
                break
            written += count
        return written

    def read(self, index: int, offset: int, length: int) -> bytes:
        """Read up to ``length`` bytes at ``offset`` of swap file ``index``."""
        desc = self._file(index)
        if length <= 0:
            return b""
        if self.direct:
            buffer = mmap.mmap(-1, length)
            count = os.preadv(desc.fd, [buffer], offset)
            return buffer[:count]
        pieces = []
        got = 0
        while got < length:
            piece = self._pread(desc.fd, length - got, offset + got)
            if not piece:
                break
            pieces.append(piece)
            got += len(piece)
        return b"".join(pieces)

    def free_disk_space(self) -> int:
        """Return the free bytes on the file system holding the swap files."""
        found = self.filemask.rfind("/")
        directory = "." if found < 0 else (self.filemask[:found] or "/")
        if hasattr(os, "statvfs"):
            stats = os.statvfs(directory)
            return stats.f_bfree * stats.f_bsize
        return shutil.disk_usage(directory).free

    def close(self) -> None:
        """Close and delete every swap file."""
        for desc in self._files:
            try:
                os.close(desc.fd)
            except OSError:
                pass
            try:
                os.unlink(desc.name)
            except FileNotFoundError:
                pass
        self._files = []