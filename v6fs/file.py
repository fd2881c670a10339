"""Open files: the system-wide file table and pipes."""

from __future__ import annotations

import errno
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .layout import BSIZE, MAXOPBLOCKS, NFILE, KernelPanic, Stat

if TYPE_CHECKING:
    from .filesystem import FileSystem, Inode

PIPESIZE = 512


class FileKind(Enum):
    NONE = 0
    PIPE = 1
    INODE = 2


class Pipe:
    """A bounded byte channel between a writing end and a reading end."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._data = bytearray(PIPESIZE)
        self.nread = 0
        self.nwrite = 0
        self.readopen = True
        self.writeopen = True

    def write(self, data: bytes) -> int:
        """Write all of ``data``, waiting while the pipe is full."""
        with self._cond:
            for byte in bytes(data):
                while self.nwrite == self.nread + PIPESIZE:
                    if not self.readopen:
                        raise BrokenPipeError("pipe has no reader")
                    self._cond.notify_all()
                    self._cond.wait()
                self._data[self.nwrite % PIPESIZE] = byte
                self.nwrite += 1
            self._cond.notify_all()
        return len(data)

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes, waiting while empty and a writer remains."""
        with self._cond:
            while self.nread == self.nwrite and self.writeopen:
                self._cond.wait()
            count = max(0, min(n, self.nwrite - self.nread))
            start = self.nread % PIPESIZE
            chunk = bytes(self._data[start:start + count])
            if len(chunk) < count:
                chunk += bytes(self._data[:count - len(chunk)])
            self.nread += count
            self._cond.notify_all()
            return chunk

    def close(self, writable: bool) -> None:
        """Close the writing end if ``writable``, otherwise the reading end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()


@dataclass(eq=False)
class File:
    """An entry of the file table."""

    kind: FileKind = FileKind.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Pipe | None = None
    ip: "Inode | None" = None
    off: int = 0


class FileTable:
    """A fixed number of open-file slots shared by everyone."""

    def __init__(self, fs: "FileSystem | None" = None, nfile: int = NFILE):
        self.fs = fs
        self._lock = threading.Lock()
        self._files = [File() for _ in range(nfile)]

    def _filesystem(self) -> "FileSystem":
        if self.fs is None:
            raise RuntimeError("file table has no file system")
        return self.fs

    def alloc(self) -> File:
        """Claim a free slot, with one reference."""
        with self._lock:
            f = next((f for f in self._files if f.ref == 0), None)
            if f is None:
                raise OSError(errno.ENFILE, "file table is full")
            f.kind = FileKind.NONE
            f.readable = f.writable = False
            f.pipe = None
            f.ip = None
            f.off = 0
            f.ref = 1
            return f

    def dup(self, f: File) -> File:
        """Take another reference to ``f``."""
        with self._lock:
            if f.ref < 1:
                raise KernelPanic("filedup")
            f.ref += 1
        return f

    def close(self, f: File) -> None:
        """Drop a reference; the last one releases the pipe or inode."""
        with self._lock:
            if f.ref < 1:
                raise KernelPanic("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            kind, pipe, ip, writable = f.kind, f.pipe, f.ip, f.writable
            f.kind = FileKind.NONE
            f.pipe = None
            f.ip = None
        if kind is FileKind.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind is FileKind.INODE and ip is not None:
            fs = self._filesystem()
            with fs.log.transaction():
                fs.iput(ip)

    def stat(self, f: File) -> Stat:
        if f.kind is not FileKind.INODE or f.ip is None:
            raise ValueError("only files backed by an inode have metadata")
        fs = self._filesystem()
        fs.ilock(f.ip)
        try:
            return fs.stat(f.ip)
        finally:
            fs.iunlock(f.ip)

    def read(self, f: File, n: int) -> bytes:
        """Read up to ``n`` bytes from ``f`` at its offset."""
        if not f.readable:
            raise PermissionError("file is not open for reading")
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.read(n)
        if f.kind is FileKind.INODE and f.ip is not None:
            fs = self._filesystem()
            fs.ilock(f.ip)
            try:
                data = fs.readi(f.ip, f.off, n)
                f.off += len(data)
            finally:
                fs.iunlock(f.ip)
            return data
        raise KernelPanic("fileread")

    def write(self, f: File, data: bytes) -> int:
        """Write ``data`` to ``f``; inode writes go a few blocks per transaction."""
        if not f.writable:
            raise PermissionError("file is not open for writing")
        data = bytes(data)
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.write(data)
        if f.kind is FileKind.INODE and f.ip is not None:
            fs = self._filesystem()
            # Inode, indirect block, allocation blocks and two blocks of slop.
            chunk = ((MAXOPBLOCKS - 1 - 1 - 2) // 2) * BSIZE
            written = 0
            while written < len(data):
                part = data[written:written + chunk]
                with fs.log.transaction():
                    fs.ilock(f.ip)
                    try:
                        r = fs.writei(f.ip, part, f.off)
                        f.off += r
                    finally:
                        fs.iunlock(f.ip)
                if r != len(part):
                    raise KernelPanic("short filewrite")
                written += r
            return written
        raise KernelPanic("filewrite")

    def pipe(self) -> tuple[File, File]:
        """Create a pipe; return its reading and writing files."""
        f0 = self.alloc()
        try:
            f1 = self.alloc()
        except OSError:
            self.close(f0)
            raise
        p = Pipe()
        f0.kind, f0.readable, f0.writable, f0.pipe = FileKind.PIPE, True, False, p
        f1.kind, f1.readable, f1.writable, f1.pipe = FileKind.PIPE, False, True, p
        return f0, f1