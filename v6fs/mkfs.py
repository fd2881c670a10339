"""Build a file system image holding a root directory and some files."""

from __future__ import annotations

import struct
import sys
from collections.abc import Iterable, Mapping
from pathlib import Path

from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    FSSIZE,
    IPB,
    LOGSIZE,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DirEntry,
    DiskInode,
    FileType,
    Superblock,
    iblock,
)

NINODES = 200

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class ImageBuilder:
    """Lays out boot block, superblock, log, inodes, bitmap and data blocks."""

    def __init__(self, fssize: int = FSSIZE, ninodes: int = NINODES, nlog: int = LOGSIZE):
        self.fssize = fssize
        self.nbitmap = fssize // BPB + 1
        self.ninodeblocks = ninodes // IPB + 1
        self.nlog = nlog
        self.nmeta = 2 + nlog + self.ninodeblocks + self.nbitmap
        self.nblocks = fssize - self.nmeta
        if self.nblocks <= 0:
            raise ValueError("image too small for its metadata")
        self.sb = Superblock(
            size=fssize,
            nblocks=self.nblocks,
            ninodes=ninodes,
            nlog=nlog,
            logstart=2,
            inodestart=2 + nlog,
            bmapstart=2 + nlog + self.ninodeblocks,
        )
        self._image = bytearray(fssize * BSIZE)
        self._wsect(1, self.sb.pack())
        self.freeinode = 1
        self.freeblock = self.nmeta
        self._finished = False
        self.rootino = self.ialloc(FileType.DIR)
        if self.rootino != ROOTINO:
            raise RuntimeError("root directory did not get the root inode number")
        self.iappend(self.rootino, DirEntry(self.rootino, ".").pack())
        self.iappend(self.rootino, DirEntry(self.rootino, "..").pack())

    def _rsect(self, sec: int) -> bytearray:
        if not 0 <= sec < self.fssize:
            raise ValueError(f"sector {sec} is outside the image")
        return bytearray(self._image[sec * BSIZE:(sec + 1) * BSIZE])

    def _wsect(self, sec: int, data: bytes) -> None:
        if not 0 <= sec < self.fssize:
            raise ValueError(f"sector {sec} is outside the image")
        block = bytes(data).ljust(BSIZE, b"\0")[:BSIZE]
        self._image[sec * BSIZE:(sec + 1) * BSIZE] = block

    def _alloc_block(self) -> int:
        if self.freeblock >= self.fssize:
            raise ValueError("image is out of data blocks")
        block = self.freeblock
        self.freeblock += 1
        return block

    def ialloc(self, type_: int) -> int:
        """Allocate the next inode with one link and no content."""
        inum = self.freeinode
        if inum >= self.sb.ninodes:
            raise ValueError("image is out of inodes")
        self.freeinode += 1
        self.write_inode(inum, DiskInode(type=int(type_), nlink=1, size=0))
        return inum

    def read_inode(self, inum: int) -> DiskInode:
        block = self._rsect(iblock(inum, self.sb))
        off = (inum % IPB) * DINODE_SIZE
        return DiskInode.unpack(block[off:off + DINODE_SIZE])

    def write_inode(self, inum: int, din: DiskInode) -> None:
        bn = iblock(inum, self.sb)
        block = self._rsect(bn)
        off = (inum % IPB) * DINODE_SIZE
        block[off:off + DINODE_SIZE] = din.pack()
        self._wsect(bn, block)

    def iappend(self, inum: int, data: bytes) -> None:
        """Append ``data`` to the end of inode ``inum``."""
        din = self.read_inode(inum)
        off = din.size
        view = memoryview(bytes(data))
        pos = 0
        while pos < len(view):
            fbn = off // BSIZE
            if fbn >= MAXFILE:
                raise ValueError("file is larger than the maximum file size")
            if fbn < NDIRECT:
                if din.addrs[fbn] == 0:
                    din.addrs[fbn] = self._alloc_block()
                target = din.addrs[fbn]
            else:
                if din.addrs[NDIRECT] == 0:
                    din.addrs[NDIRECT] = self._alloc_block()
                table = list(_INDIRECT.unpack(self._rsect(din.addrs[NDIRECT])))
                if table[fbn - NDIRECT] == 0:
                    table[fbn - NDIRECT] = self._alloc_block()
                    self._wsect(din.addrs[NDIRECT], _INDIRECT.pack(*table))
                target = table[fbn - NDIRECT]
            n1 = min(len(view) - pos, (fbn + 1) * BSIZE - off)
            block = self._rsect(target)
            start = off - fbn * BSIZE
            block[start:start + n1] = view[pos:pos + n1]
            self._wsect(target, block)
            pos += n1
            off += n1
        din.size = off
        self.write_inode(inum, din)

    def add_file(self, name: str, data: bytes) -> int:
        """Add a file to the root directory; a leading '_' is dropped from its name."""
        if self._finished:
            raise RuntimeError("image is already finished")
        if "/" in name:
            raise ValueError(f"file name {name!r} may not contain '/'")
        if name.startswith("_"):
            name = name[1:]
        inum = self.ialloc(FileType.FILE)
        self.iappend(self.rootino, DirEntry(inum, name).pack())
        self.iappend(inum, data)
        return inum

    def finish(self) -> bytes:
        """Round up the root directory size, write the bitmap, return the image."""
        if self._finished:
            raise RuntimeError("image is already finished")
        din = self.read_inode(self.rootino)
        din.size = (din.size // BSIZE + 1) * BSIZE
        self.write_inode(self.rootino, din)

        used = self.freeblock
        if used >= BPB:
            raise ValueError("too many blocks for a single bitmap block")
        bitmap = bytearray(BSIZE)
        bitmap[:used // 8] = b"\xff" * (used // 8)
        if used % 8:
            bitmap[used // 8] = (1 << (used % 8)) - 1
        self._wsect(self.sb.bmapstart, bitmap)
        self._finished = True
        return bytes(self._image)


def build_image(files: Mapping[str, bytes] | Iterable[tuple[str, bytes]]) -> bytes:
    """Return an image holding the given (name, content) files."""
    items = files.items() if isinstance(files, Mapping) else files
    builder = ImageBuilder()
    for name, data in items:
        builder.add_file(name, data)
    return builder.finish()


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1
    output = args[0]
    builder = ImageBuilder()
    print(
        f"nmeta {builder.nmeta} (boot, super, log blocks {builder.nlog} "
        f"inode blocks {builder.ninodeblocks}, bitmap blocks {builder.nbitmap}) "
        f"blocks {builder.nblocks} total {builder.fssize}"
    )
    for name in args[1:]:
        if "/" in name:
            print(f"mkfs: {name}: file names may not contain '/'", file=sys.stderr)
            return 1
        try:
            data = Path(name).read_bytes()
        except OSError as exc:
            print(f"{name}: {exc.strerror}", file=sys.stderr)
            return 1
        try:
            builder.add_file(name, data)
        except ValueError as exc:
            print(f"mkfs: {name}: {exc}", file=sys.stderr)
            return 1
    print(f"balloc: first {builder.freeblock} blocks have been allocated")
    try:
        image = builder.finish()
    except ValueError as exc:
        print(f"mkfs: {exc}", file=sys.stderr)
        return 1
    print(f"balloc: write bitmap block at sector {builder.sb.bmapstart}")
    try:
        Path(output).write_bytes(image)
    except OSError as exc:
        print(f"{output}: {exc.strerror}", file=sys.stderr)
        return 1
    return 0