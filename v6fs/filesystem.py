"""Inodes, directories and path names on top of the block layer and log."""

from __future__ import annotations

import logging
import struct
import threading
from dataclasses import dataclass, field
from typing import Callable

from .disk import Buf, BufferCache, MemoryDisk
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    IPB,
    MAXFILE,
    NDEV,
    NDIRECT,
    NINDIRECT,
    NINODE,
    ROOTDEV,
    ROOTINO,
    DirEntry,
    DiskInode,
    FileType,
    KernelPanic,
    Stat,
    Superblock,
    bblock,
    iblock,
)
from .log import Log

_logger = logging.getLogger(__name__)

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")

DeviceRead = Callable[["Inode", int], bytes]
DeviceWrite = Callable[["Inode", bytes], int]


def skip_element(path: str) -> tuple[str, str] | None:
    """Split off the first element of ``path``.

    Returns the element, cut to DIRSIZ characters, and the rest of the path
    with leading slashes removed, or None if there is no element left.
    """
    stripped = path.lstrip("/")
    if not stripped:
        return None
    element, _, rest = stripped.partition("/")
    return element[:DIRSIZ], rest.lstrip("/")


def namecmp(s: str, t: str) -> int:
    """Compare two directory entry names on their first DIRSIZ bytes."""
    a = s.encode("utf-8", "surrogateescape")[:DIRSIZ]
    b = t.encode("utf-8", "surrogateescape")[:DIRSIZ]
    return (a > b) - (a < b)


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode."""

    dev: int = 0
    inum: int = 0
    ref: int = 0
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _owner: int | None = field(default=None, repr=False)

    @property
    def holding(self) -> bool:
        """True if the calling thread holds this inode's lock."""
        return self._owner == threading.get_ident()

    def _acquire(self) -> None:
        if self.holding:
            raise KernelPanic("acquiresleep: inode already held")
        self._lock.acquire()
        self._owner = threading.get_ident()

    def _release(self) -> None:
        self._owner = None
        self._lock.release()


class FileSystem:
    """A mounted file system: inode cache, block allocator and name lookup."""

    def __init__(self, cache: BufferCache, log: Log, sb: Superblock, dev: int = ROOTDEV):
        self.cache = cache
        self.log = log
        self.sb = sb
        self.dev = dev
        self._icache_lock = threading.Lock()
        self._inodes = [Inode() for _ in range(NINODE)]
        self._devsw: list[tuple[DeviceRead | None, DeviceWrite | None]] = [
            (None, None) for _ in range(NDEV)
        ]

    @classmethod
    def mount(cls, disk: MemoryDisk, dev: int = ROOTDEV) -> "FileSystem":
        """Read the superblock, recover the log and return the file system."""
        cache = BufferCache(disk)
        buf = cache.read(dev, 1)
        sb = Superblock.unpack(buf.data)
        cache.release(buf)
        _logger.info(
            "sb: size %d nblocks %d ninodes %d nlog %d logstart %d "
            "inodestart %d bmap start %d",
            sb.size, sb.nblocks, sb.ninodes, sb.nlog,
            sb.logstart, sb.inodestart, sb.bmapstart,
        )
        log = Log(cache, dev)
        return cls(cache, log, sb, dev)

    def register_device(
        self, major: int, read: DeviceRead | None, write: DeviceWrite | None
    ) -> None:
        """Install the read and write functions for a device major number."""
        if not 0 <= major < NDEV:
            raise ValueError(f"device major number must be in 0..{NDEV - 1}")
        self._devsw[major] = (read, write)

    # Blocks.

    def _bzero(self, bno: int) -> None:
        bp = self.cache.read(self.dev, bno)
        bp.data[:] = bytes(BSIZE)
        self.log.write(bp)
        self.cache.release(bp)

    def _balloc(self) -> int:
        size = self.sb.size
        for base in range(0, size, BPB):
            bp = self.cache.read(self.dev, bblock(base, self.sb))
            for bi in range(min(BPB, size - base)):
                mask = 1 << (bi % 8)
                if bp.data[bi // 8] & mask == 0:
                    bp.data[bi // 8] |= mask
                    self.log.write(bp)
                    self.cache.release(bp)
                    self._bzero(base + bi)
                    return base + bi
            self.cache.release(bp)
        raise KernelPanic("balloc: out of blocks")

    def _bfree(self, b: int) -> None:
        bp = self.cache.read(self.dev, bblock(b, self.sb))
        bi = b % BPB
        mask = 1 << (bi % 8)
        if bp.data[bi // 8] & mask == 0:
            self.cache.release(bp)
            raise KernelPanic("freeing free block")
        bp.data[bi // 8] &= ~mask & 0xFF
        self.log.write(bp)
        self.cache.release(bp)

    # Inodes.

    def _dinode_offset(self, inum: int) -> int:
        return (inum % IPB) * DINODE_SIZE

    def ialloc(self, type_: int) -> Inode:
        """Allocate an on-disk inode of the given type; return it unlocked."""
        for inum in range(1, self.sb.ninodes):
            bp = self.cache.read(self.dev, iblock(inum, self.sb))
            off = self._dinode_offset(inum)
            dip = DiskInode.unpack(bp.data[off:off + DINODE_SIZE])
            if dip.type == 0:
                bp.data[off:off + DINODE_SIZE] = DiskInode(type=int(type_)).pack()
                self.log.write(bp)
                self.cache.release(bp)
                return self.iget(inum)
            self.cache.release(bp)
        raise KernelPanic("ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy a modified in-memory inode to disk."""
        bp = self.cache.read(ip.dev, iblock(ip.inum, self.sb))
        off = self._dinode_offset(ip.inum)
        bp.data[off:off + DINODE_SIZE] = DiskInode(
            ip.type, ip.major, ip.minor, ip.nlink, ip.size, list(ip.addrs)
        ).pack()
        self.log.write(bp)
        self.cache.release(bp)

    def iget(self, inum: int) -> Inode:
        """Return the cached inode for ``inum``, neither locked nor read."""
        with self._icache_lock:
            empty = None
            for ip in self._inodes:
                if ip.ref > 0 and ip.dev == self.dev and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                raise KernelPanic("iget: no inodes")
            empty.dev = self.dev
            empty.inum = inum
            empty.ref = 1
            empty.valid = False
            return empty

    def idup(self, ip: Inode) -> Inode:
        """Take another reference to ``ip``."""
        with self._icache_lock:
            ip.ref += 1
        return ip

    def ilock(self, ip: Inode | None) -> None:
        """Lock an inode, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise KernelPanic("ilock")
        ip._acquire()
        if not ip.valid:
            bp = self.cache.read(ip.dev, iblock(ip.inum, self.sb))
            off = self._dinode_offset(ip.inum)
            dip = DiskInode.unpack(bp.data[off:off + DINODE_SIZE])
            self.cache.release(bp)
            ip.type, ip.major, ip.minor = dip.type, dip.major, dip.minor
            ip.nlink, ip.size, ip.addrs = dip.nlink, dip.size, list(dip.addrs)
            ip.valid = True
            if ip.type == 0:
                ip._release()
                raise KernelPanic("ilock: no type")

    def iunlock(self, ip: Inode | None) -> None:
        if ip is None or not ip.holding or ip.ref < 1:
            raise KernelPanic("iunlock")
        ip._release()

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode if it was the last and unlinked."""
        ip._acquire()
        try:
            if ip.valid and ip.nlink == 0:
                with self._icache_lock:
                    refs = ip.ref
                if refs == 1:
                    self._itrunc(ip)
                    ip.type = 0
                    self.iupdate(ip)
                    ip.valid = False
        finally:
            ip._release()
        with self._icache_lock:
            ip.ref -= 1

    def iunlockput(self, ip: Inode) -> None:
        self.iunlock(ip)
        self.iput(ip)

    def _bmap(self, ip: Inode, bn: int) -> int:
        """Disk block of the ``bn``-th block of ``ip``, allocating it if absent."""
        if bn < NDIRECT:
            if ip.addrs[bn] == 0:
                ip.addrs[bn] = self._balloc()
            return ip.addrs[bn]
        bn -= NDIRECT
        if bn < NINDIRECT:
            if ip.addrs[NDIRECT] == 0:
                ip.addrs[NDIRECT] = self._balloc()
            bp = self.cache.read(ip.dev, ip.addrs[NDIRECT])
            table = list(_INDIRECT.unpack_from(bp.data, 0))
            addr = table[bn]
            if addr == 0:
                addr = table[bn] = self._balloc()
                _INDIRECT.pack_into(bp.data, 0, *table)
                self.log.write(bp)
            self.cache.release(bp)
            return addr
        raise KernelPanic("bmap: out of range")

    def _itrunc(self, ip: Inode) -> None:
        for i, addr in enumerate(ip.addrs[:NDIRECT]):
            if addr:
                self._bfree(addr)
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            bp = self.cache.read(ip.dev, ip.addrs[NDIRECT])
            table = _INDIRECT.unpack_from(bp.data, 0)
            self.cache.release(bp)
            for addr in table:
                if addr:
                    self._bfree(addr)
            self._bfree(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stat(self, ip: Inode) -> Stat:
        return Stat(dev=ip.dev, ino=ip.inum, type=ip.type, nlink=ip.nlink, size=ip.size)

    # Inode content.

    def _device(self, ip: Inode) -> tuple[DeviceRead | None, DeviceWrite | None]:
        if not 0 <= ip.major < NDEV:
            raise LookupError(f"no device with major number {ip.major}")
        return self._devsw[ip.major]

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to ``n`` bytes at ``off``; the result stops at end of file."""
        if ip.type == FileType.DEVICE:
            read, _ = self._device(ip)
            if read is None:
                raise LookupError(f"device {ip.major} cannot be read")
            return read(ip, n)
        if off < 0 or n < 0 or off > ip.size:
            raise ValueError(f"offset {off} is outside the file")
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            bp = self.cache.read(ip.dev, self._bmap(ip, off // BSIZE))
            start = off % BSIZE
            m = min(n - len(out), BSIZE - start)
            out += bp.data[start:start + m]
            self.cache.release(bp)
            off += m
        return bytes(out)

    def writei(self, ip: Inode, data: bytes, off: int) -> int:
        """Write ``data`` at ``off``, growing the file; return the count written."""
        if ip.type == FileType.DEVICE:
            _, write = self._device(ip)
            if write is None:
                raise LookupError(f"device {ip.major} cannot be written")
            return write(ip, bytes(data))
        n = len(data)
        if off < 0 or off > ip.size:
            raise ValueError(f"offset {off} is outside the file")
        if off + n > MAXFILE * BSIZE:
            raise ValueError("write would exceed the maximum file size")
        tot = 0
        while tot < n:
            bp = self.cache.read(ip.dev, self._bmap(ip, off // BSIZE))
            start = off % BSIZE
            m = min(n - tot, BSIZE - start)
            bp.data[start:start + m] = data[tot:tot + m]
            self.log.write(bp)
            self.cache.release(bp)
            tot += m
            off += m
        if n > 0 and off > ip.size:
            ip.size = off
            self.iupdate(ip)
        return n

    # Directories.

    def _entries(self, dp: Inode):
        for off in range(0, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise KernelPanic("dirlookup read")
            yield off, DirEntry.unpack(raw)

    def dirlookup(self, dp: Inode, name: str) -> tuple[Inode, int] | None:
        """Find ``name`` in directory ``dp``: its inode and entry offset."""
        if dp.type != FileType.DIR:
            raise KernelPanic("dirlookup not DIR")
        for off, de in self._entries(dp):
            if de.inum != 0 and namecmp(name, de.name) == 0:
                return self.iget(de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (name, inum) to directory ``dp``."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FileExistsError(name)
        off = next((o for o, de in self._entries(dp) if de.inum == 0), dp.size)
        if self.writei(dp, DirEntry(inum, name).pack(), off) != DIRENT_SIZE:
            raise KernelPanic("dirlink")

    # Path names.

    def _namex(self, path: str, parent: bool, cwd: Inode | None):
        if path.startswith("/") or cwd is None:
            ip = self.iget(ROOTINO)
        else:
            ip = self.idup(cwd)
        name = ""
        while (step := skip_element(path)) is not None:
            name, path = step
            self.ilock(ip)
            if ip.type != FileType.DIR:
                self.iunlockput(ip)
                return None
            if parent and path == "":
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            self.iunlockput(ip)
            if found is None:
                return None
            ip = found[0]
        if parent:
            self.iput(ip)
            return None
        return ip, name

    def namei(self, path: str, cwd: Inode | None = None) -> Inode | None:
        """Inode for ``path``, unlocked, or None if it does not exist.

        Relative paths start at ``cwd``, or at the root when it is None.
        """
        found = self._namex(path, False, cwd)
        return None if found is None else found[0]

    def nameiparent(self, path: str, cwd: Inode | None = None) -> tuple[Inode, str] | None:
        """The parent directory of ``path`` and the final element's name."""
        return self._namex(path, True, cwd)