"""In-memory disk and the block buffer cache."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

from .layout import BSIZE, FSSIZE, NBUF, ROOTDEV, KernelPanic


@dataclass(eq=False)
class Buf:
    """A cached copy of one disk block, locked by at most one thread."""

    dev: int = -1
    blockno: int = -1
    valid: bool = False
    dirty: bool = False
    refcnt: int = 0
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _owner: int | None = field(default=None, repr=False)

    @property
    def holding(self) -> bool:
        """True if the calling thread holds this buffer's lock."""
        return self._owner == threading.get_ident()

    def _acquire(self) -> None:
        if self.holding:
            raise KernelPanic("acquiresleep: buffer already held")
        self._lock.acquire()
        self._owner = threading.get_ident()

    def _release(self) -> None:
        self._owner = None
        self._lock.release()


class MemoryDisk:
    """A disk whose blocks live in memory."""

    def __init__(self, image: bytes | bytearray | None = None, dev: int = ROOTDEV):
        self._data = bytearray(image) if image is not None else bytearray(FSSIZE * BSIZE)
        self.dev = dev
        self.nblocks = len(self._data) // BSIZE

    @classmethod
    def from_file(cls, path, dev: int = ROOTDEV) -> "MemoryDisk":
        return cls(Path(path).read_bytes(), dev)

    def save(self, path) -> None:
        Path(path).write_bytes(self._data)

    @property
    def image(self) -> bytes:
        return bytes(self._data)

    def sync(self, buf: Buf) -> None:
        """Write a dirty buffer to disk, or fill an invalid one from it."""
        if not buf.holding:
            raise KernelPanic("iderw: buf not locked")
        if buf.valid and not buf.dirty:
            raise KernelPanic("iderw: nothing to do")
        if buf.dev != self.dev:
            raise KernelPanic(f"iderw: request not for disk {self.dev}")
        if not 0 <= buf.blockno < self.nblocks:
            raise KernelPanic("iderw: block out of range")
        start = buf.blockno * BSIZE
        if buf.dirty:
            buf.dirty = False
            self._data[start:start + BSIZE] = buf.data
        else:
            buf.data[:] = self._data[start:start + BSIZE]
        buf.valid = True


class BufferCache:
    """A fixed set of buffers kept in most-recently-used order."""

    def __init__(self, disk: MemoryDisk, nbuf: int = NBUF):
        self.disk = disk
        self._lock = threading.Lock()
        self._mru = [Buf() for _ in range(nbuf)]

    def _get(self, dev: int, blockno: int) -> Buf:
        with self._lock:
            buf = next(
                (b for b in self._mru if b.dev == dev and b.blockno == blockno), None
            )
            if buf is not None:
                buf.refcnt += 1
            else:
                # A dirty buffer is pinned by the log even with no references.
                buf = next(
                    (b for b in reversed(self._mru) if b.refcnt == 0 and not b.dirty),
                    None,
                )
                if buf is None:
                    raise KernelPanic("bget: no buffers")
                buf.dev, buf.blockno = dev, blockno
                buf.valid = buf.dirty = False
                buf.refcnt = 1
        buf._acquire()
        return buf

    def read(self, dev: int, blockno: int) -> Buf:
        """Return a locked buffer holding the block's contents."""
        buf = self._get(dev, blockno)
        if not buf.valid:
            self.disk.sync(buf)
        return buf

    def write(self, buf: Buf) -> None:
        """Write a locked buffer's contents to disk."""
        if not buf.holding:
            raise KernelPanic("bwrite")
        buf.dirty = True
        self.disk.sync(buf)

    def release(self, buf: Buf) -> None:
        """Unlock a buffer; an unreferenced one becomes most recently used."""
        if not buf.holding:
            raise KernelPanic("brelse")
        buf._release()
        with self._lock:
            buf.refcnt -= 1
            if buf.refcnt == 0:
                self._mru.remove(buf)
                self._mru.insert(0, buf)