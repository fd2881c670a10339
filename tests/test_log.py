import struct

import pytest

from v6fs.disk import BufferCache, MemoryDisk
from v6fs.layout import BSIZE, FSSIZE, LOGSIZE, KernelPanic, Superblock
from v6fs.log import Log

LOGSTART = 2


def _disk(header=None, log_blocks=()):
    image = bytearray(FSSIZE * BSIZE)
    sb = Superblock(
        size=FSSIZE, nblocks=900, ninodes=200, nlog=LOGSIZE,
        logstart=LOGSTART, inodestart=LOGSTART + LOGSIZE, bmapstart=LOGSTART + LOGSIZE + 26,
    )
    packed = sb.pack()
    image[BSIZE:BSIZE + len(packed)] = packed
    if header is not None:
        raw = struct.pack(f"<i{len(header)}i", len(header), *header)
        image[LOGSTART * BSIZE:LOGSTART * BSIZE + len(raw)] = raw
    for tail, content in enumerate(log_blocks):
        start = (LOGSTART + tail + 1) * BSIZE
        image[start:start + BSIZE] = content
    return MemoryDisk(image)


def _block(disk, blockno):
    return disk.image[blockno * BSIZE:(blockno + 1) * BSIZE]


def _header_count(disk):
    return struct.unpack_from("<i", disk.image, LOGSTART * BSIZE)[0]


def test_recover_installs_committed_transaction():
    pattern = b"\xab" * BSIZE
    disk = _disk(header=[60], log_blocks=[pattern])
    log = Log(BufferCache(disk))
    assert _block(disk, 60) == pattern
    assert _header_count(disk) == 0
    assert log.blocks == []


def test_recover_without_commit_changes_nothing():
    disk = _disk(header=[], log_blocks=[b"\xcd" * BSIZE])
    Log(BufferCache(disk))
    assert _block(disk, 60) == bytes(BSIZE)


def test_reads_layout_from_superblock():
    log = Log(BufferCache(_disk()))
    assert log.start == LOGSTART
    assert log.size == LOGSIZE


def test_transaction_commits_to_home_location():
    disk = _disk()
    cache = BufferCache(disk)
    log = Log(cache)
    with log.transaction():
        buf = cache.read(1, 50)
        buf.data[:5] = b"hello"
        log.write(buf)
        cache.release(buf)
        assert _block(disk, 50)[:5] == bytes(5)
    assert _block(disk, 50)[:5] == b"hello"
    assert _block(disk, LOGSTART + 1)[:5] == b"hello"
    assert _header_count(disk) == 0
    assert log.blocks == []
    assert log.outstanding == 0


def test_repeated_writes_are_absorbed():
    cache = BufferCache(_disk())
    log = Log(cache)
    log.begin_op()
    for _ in range(2):
        buf = cache.read(1, 50)
        log.write(buf)
        cache.release(buf)
    assert log.blocks == [50]
    log.end_op()
    assert log.blocks == []


def test_nested_operations_commit_once_all_end():
    disk = _disk()
    cache = BufferCache(disk)
    log = Log(cache)
    log.begin_op()
    log.begin_op()
    buf = cache.read(1, 70)
    buf.data[0] = 0x42
    log.write(buf)
    cache.release(buf)
    log.end_op()
    assert _block(disk, 70)[0] == 0
    log.end_op()
    assert _block(disk, 70)[0] == 0x42


def test_logged_buffer_is_pinned_until_commit():
    cache = BufferCache(_disk())
    log = Log(cache)
    with log.transaction():
        buf = cache.read(1, 80)
        log.write(buf)
        cache.release(buf)
        assert buf.dirty
    assert not buf.dirty


def test_write_outside_transaction_panics():
    cache = BufferCache(_disk())
    log = Log(cache)
    buf = cache.read(1, 50)
    with pytest.raises(KernelPanic):
        log.write(buf)


def test_too_big_transaction_panics():
    cache = BufferCache(_disk())
    log = Log(cache)
    log.begin_op()
    for blockno in range(100, 100 + LOGSIZE - 1):
        buf = cache.read(1, blockno)
        log.write(buf)
        cache.release(buf)
    assert len(log.blocks) == LOGSIZE - 1
    buf = cache.read(1, 100 + LOGSIZE - 1)
    with pytest.raises(KernelPanic):
        log.write(buf)


def test_exception_inside_transaction_still_ends_op():
    disk = _disk()
    cache = BufferCache(disk)
    log = Log(cache)
    with pytest.raises(ValueError):
        with log.transaction():
            buf = cache.read(1, 90)
            buf.data[0] = 1
            log.write(buf)
            cache.release(buf)
            raise ValueError
    assert log.outstanding == 0
    assert _block(disk, 90)[0] == 1