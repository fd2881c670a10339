import threading

import pytest

from v6fs.disk import MemoryDisk
from v6fs.file import PIPESIZE, FileKind, FileTable, Pipe
from v6fs.filesystem import FileSystem
from v6fs.layout import FileType, KernelPanic
from v6fs.mkfs import build_image

CONTENT = b"hello world"


@pytest.fixture
def fs():
    return FileSystem.mount(MemoryDisk(build_image({"README": CONTENT})))


def open_inode(table, fs, path, readable=True, writable=False):
    f = table.alloc()
    f.kind = FileKind.INODE
    f.ip = fs.namei(path)
    f.readable = readable
    f.writable = writable
    return f


def test_read_advances_offset(fs):
    table = FileTable(fs)
    f = open_inode(table, fs, "README")
    assert table.read(f, 5) == CONTENT[:5]
    assert table.read(f, 100) == CONTENT[5:]
    assert table.read(f, 10) == b""
    assert f.off == len(CONTENT)


def test_stat(fs):
    table = FileTable(fs)
    f = open_inode(table, fs, "README")
    st = table.stat(f)
    assert st.size == len(CONTENT)
    assert st.type == FileType.FILE


def test_append_and_read_back(fs):
    table = FileTable(fs)
    w = open_inode(table, fs, "README", readable=False, writable=True)
    w.off = len(CONTENT)
    assert table.write(w, b"!!") == 2
    r = open_inode(table, fs, "README")
    assert table.read(r, 100) == CONTENT + b"!!"


def test_large_write_in_chunks(fs):
    table = FileTable(fs)
    data = bytes(range(256)) * 16
    w = open_inode(table, fs, "README", readable=False, writable=True)
    w.off = len(CONTENT)
    assert table.write(w, data) == len(data)
    r = open_inode(table, fs, "README")
    assert table.read(r, len(CONTENT) + len(data)) == CONTENT + data


def test_permissions(fs):
    table = FileTable(fs)
    f = open_inode(table, fs, "README", readable=False, writable=False)
    with pytest.raises(PermissionError):
        table.read(f, 1)
    with pytest.raises(PermissionError):
        table.write(f, b"x")


def test_dup_and_close(fs):
    table = FileTable(fs)
    f = open_inode(table, fs, "README")
    assert table.dup(f) is f
    assert f.ref == 2
    table.close(f)
    assert f.ref == 1
    assert f.kind is FileKind.INODE
    table.close(f)
    assert f.ref == 0
    assert f.kind is FileKind.NONE
    with pytest.raises(KernelPanic):
        table.close(f)


def test_unknown_kind_panics(fs):
    table = FileTable(fs)
    f = table.alloc()
    f.readable = True
    with pytest.raises(KernelPanic):
        table.read(f, 1)


def test_table_full_and_pipe_releases_slot(fs):
    table = FileTable(fs, nfile=2)
    first = table.alloc()
    with pytest.raises(OSError):
        table.pipe()
    second = table.alloc()
    assert second is not first
    assert second.ref == 1
    with pytest.raises(OSError):
        table.alloc()


def test_pipe_round_trip(fs):
    table = FileTable(fs)
    r, w = table.pipe()
    assert (r.readable, r.writable, w.readable, w.writable) == (True, False, False, True)
    assert table.write(w, b"abc") == 3
    assert table.read(r, 10) == b"abc"
    with pytest.raises(ValueError):
        table.stat(r)


def test_pipe_eof_after_writer_closes(fs):
    table = FileTable(fs)
    r, w = table.pipe()
    table.write(w, b"xy")
    table.close(w)
    assert table.read(r, 10) == b"xy"
    assert table.read(r, 10) == b""


def test_pipe_broken_when_reader_closed():
    p = Pipe()
    p.close(False)
    assert p.write(b"ok") == 2
    with pytest.raises(BrokenPipeError):
        p.write(bytes(PIPESIZE))


def test_pipe_blocks_until_drained():
    p = Pipe()
    data = bytes(i % 200 for i in range(4 * PIPESIZE))
    writer = threading.Thread(target=p.write, args=(data,))
    writer.start()
    got = b""
    while len(got) < len(data):
        got += p.read(len(data))
    writer.join(timeout=5)
    assert got == data
    assert not writer.is_alive()