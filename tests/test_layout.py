import pytest

from v6fs.layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    IPB,
    NDIRECT,
    DirEntry,
    DiskInode,
    FileType,
    Superblock,
    bblock,
    iblock,
)


def test_record_sizes_fixed_by_format():
    assert len(DiskInode().pack()) == 64
    assert len(DirEntry(1, "a").pack()) == 16
    assert len(Superblock().pack()) == 28
    assert DINODE_SIZE == 64
    assert DIRENT_SIZE == 16
    assert IPB * DINODE_SIZE == BSIZE


def test_superblock_round_trip():
    sb = Superblock(1000, 941, 200, 30, 2, 32, 58)
    assert Superblock.unpack(sb.pack()) == sb


def test_superblock_is_little_endian():
    assert Superblock(size=1).pack() == b"\x01" + b"\x00" * 27


def test_superblock_unpack_ignores_trailing_block_bytes():
    sb = Superblock(7, 6, 5, 4, 3, 2, 1)
    assert Superblock.unpack(sb.pack() + b"\xff" * 100) == sb


def test_superblock_too_short():
    with pytest.raises(ValueError):
        Superblock.unpack(b"\x00" * 10)


def test_dinode_round_trip():
    addrs = list(range(100, 100 + NDIRECT + 1))
    din = DiskInode(FileType.DIR, 0, 0, 1, 1024, addrs)
    back = DiskInode.unpack(din.pack())
    assert back == din
    assert back.type == FileType.DIR


def test_dinode_negative_short_fields():
    din = DiskInode(type=FileType.DEVICE, major=-1, minor=-2, nlink=3)
    back = DiskInode.unpack(din.pack())
    assert (back.major, back.minor) == (-1, -2)


def test_dinode_wrong_addr_count():
    with pytest.raises(ValueError):
        DiskInode(addrs=[0, 1]).pack()


def test_dirent_round_trip_and_size():
    de = DirEntry(5, "README")
    packed = de.pack()
    assert len(packed) == DIRENT_SIZE
    assert DirEntry.unpack(packed) == de


def test_dirent_name_stops_at_nul():
    de = DirEntry.unpack(b"\x05\x00ab" + b"\x00" * 12)
    assert de == DirEntry(5, "ab")


def test_dirent_truncates_long_names():
    name = "abcdefghijklmnopqrstuvwxyz"
    de = DirEntry.unpack(DirEntry(3, name).pack())
    assert de.name == name[:DIRSIZ]
    assert de.inum == 3


def test_dirent_too_short():
    with pytest.raises(ValueError):
        DirEntry.unpack(b"\x01")


def test_iblock_groups_inodes_per_block():
    sb = Superblock(inodestart=32)
    assert iblock(0, sb) == sb.inodestart
    assert iblock(IPB - 1, sb) == sb.inodestart
    assert iblock(IPB, sb) == sb.inodestart + 1


def test_bblock_groups_bits_per_block():
    sb = Superblock(bmapstart=58)
    assert bblock(0, sb) == sb.bmapstart
    assert bblock(BPB - 1, sb) == sb.bmapstart
    assert bblock(BPB, sb) == sb.bmapstart + 1