# v6fs

A small Unix-style file system in pure Python. Disk images have a boot
block, a superblock, a write-ahead redo log, inode blocks, a free-block
bitmap and data blocks (1000 blocks of 512 bytes by default). The package
contains the layers that build and work on such images:

- `v6fs.layout` – on-disk structures (`Superblock`, `DiskInode`, `DirEntry`)
  with `pack`/`unpack`, the `Stat` record, `FileType`, the limits
  (`BSIZE`, `NDIRECT`, `DIRSIZ`, ...) and block arithmetic (`iblock`,
  `bblock`).
- `v6fs.disk` – `MemoryDisk`, a disk held in memory that can be loaded from
  and saved to a file, and `BufferCache`, a fixed set of block buffers kept
  in most-recently-used order.
- `v6fs.log` – `Log`, which groups block writes into atomic transactions
  (`begin_op`/`end_op` or the `transaction()` context manager) and
  replays a committed transaction found on disk when mounted.
- `v6fs.filesystem` – `FileSystem`: block and inode allocation, reading and
  writing inode contents (`readi`, `writei`), directories (`dirlookup`,
  `dirlink`) and path lookup (`namei`, `nameiparent`). Device inodes are
  served by functions installed with `register_device`.
- `v6fs.file` – `FileTable` of open files with reference counts, and `Pipe`,
  a bounded 512-byte channel; `FileTable.pipe()` returns its two ends.
- `v6fs.mkfs` – `ImageBuilder` and `build_image` to create an image with a
  root directory and files.
- `v6fs.grep` – a matcher for `^`, `.`, `*` and `$` (`match`) and a line
  filter over byte streams (`grep`).
- `v6fs.tools` – `cat`, `echo`, `fmtname` and `ls` over a mounted image.
- `v6fs.console` – printf-style formatting (`format_kernel`,
  `format_user`), an 80x25 text screen model (`CgaScreen`) and a
  line-editing input buffer (`ConsoleInput`).
- `v6fs.keyboard` – `Keyboard`, turning PC scan codes into characters with
  shift, control and caps-lock state.
- `v6fs.mptable` – finding and parsing MultiProcessor configuration tables in
  a memory dump (`parse` returns an `MpConfiguration`, failures raise
  `MpError`).

Inconsistencies that the on-disk code cannot recover from raise
`v6fs.layout.KernelPanic`. Ordinary errors use Python's own exceptions
(`FileExistsError`, `FileNotFoundError`, `PermissionError`, `ValueError`,
`BrokenPipeError`, ...).

## Install

    pip install .

## Build an image

    v6fs-mkfs fs.img README.md notes.txt

The first argument is the image to create; the rest are host files copied
into the root directory. A leading `_` in a file name is dropped, names may
not contain `/`, and names longer than 14 bytes are cut.

From Python:

    from v6fs.mkfs import build_image

    image = build_image({"hello": b"hello, world\n"})

## Read and write files from Python

    from v6fs.disk import MemoryDisk
    from v6fs.filesystem import FileSystem
    from v6fs.layout import FileType
    from v6fs.mkfs import build_image

    disk = MemoryDisk(build_image({"hello": b"hello, world\n"}))
    fs = FileSystem.mount(disk)

    with fs.log.transaction():
        ip = fs.namei("/hello")
    fs.ilock(ip)
    data = fs.readi(ip, 0, ip.size)
    fs.iunlock(ip)
    with fs.log.transaction():
        fs.iput(ip)

    with fs.log.transaction():
        root = fs.namei("/")
        fs.ilock(root)
        new = fs.ialloc(FileType.FILE)
        fs.ilock(new)
        new.nlink = 1
        fs.iupdate(new)
        fs.writei(new, b"some notes\n", 0)
        fs.dirlink(root, "notes", new.inum)
        fs.iunlockput(new)
        fs.iunlockput(root)

    disk.save("fs.img")

`MemoryDisk.from_file("fs.img")` loads a saved image. Each transaction may
change only a few blocks; `FileTable.write` splits larger writes into
several transactions for you.

## Command-line tools

    v6fs-grep '^hel.o' notes.txt
    v6fs-tools ls fs.img /
    v6fs-tools cat fs.img /README.md
    v6fs-tools echo hello world

`v6fs-grep` reads standard input when no file is given and prints only whole
lines ending in a newline. `v6fs-tools ls` prints `name type inode size` for
a file or for every entry of a directory (the root when no path is given);
`v6fs-tools cat` copies standard input when no path is given.

## What it does not do

- There is no way to make directories, remove files or add hard links: the
  file system offers allocation, reading, writing, `dirlink` and lookup, and
  inodes are freed only when their link count is already zero.
- The tools only read images; nothing here writes files into an existing
  image from the command line.
- There are no processes, no shell and no system-call layer. Blocking
  operations (`Pipe.read`, `ConsoleInput.read`, `Log.begin_op`) wait on
  Python threads.
- `CgaScreen`, `ConsoleInput`, `Keyboard` and `v6fs.mptable` work on values
  you hand them; they talk to no real screen, keyboard or memory.

## Tests

    pip install .[test]
    pytest