"""User-level tools working on a mounted file system: cat, echo and ls."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Iterable
from typing import BinaryIO, TextIO

from .disk import MemoryDisk
from .filesystem import FileSystem, Inode
from .layout import DIRENT_SIZE, DIRSIZ, DirEntry, FileType, Stat

_CHUNK = 512
_PATHBUF = 512


def _lookup(fs: FileSystem, path: str) -> Inode:
    with fs.log.transaction():
        ip = fs.namei(path)
    if ip is None:
        raise FileNotFoundError(path)
    return ip


def _put(fs: FileSystem, ip: Inode) -> None:
    with fs.log.transaction():
        fs.iput(ip)


def _read(fs: FileSystem, ip: Inode, off: int, n: int) -> bytes:
    fs.ilock(ip)
    try:
        return fs.readi(ip, off, n)
    finally:
        fs.iunlock(ip)


def _stat_inode(fs: FileSystem, ip: Inode) -> Stat:
    fs.ilock(ip)
    try:
        return fs.stat(ip)
    finally:
        fs.iunlock(ip)


def _stat(fs: FileSystem, path: str) -> Stat:
    ip = _lookup(fs, path)
    try:
        return _stat_inode(fs, ip)
    finally:
        _put(fs, ip)


def cat(fs: FileSystem, paths: Iterable[str], out: BinaryIO) -> None:
    """Copy the contents of each file to ``out``; a missing one raises."""
    for path in paths:
        ip = _lookup(fs, path)
        try:
            off = 0
            while chunk := _read(fs, ip, off, _CHUNK):
                out.write(chunk)
                off += len(chunk)
        finally:
            _put(fs, ip)


def echo(args: Iterable[str]) -> str:
    """The arguments joined by spaces and ended by a newline; empty for none."""
    words = list(args)
    return " ".join(words) + "\n" if words else ""


def fmtname(path: str) -> str:
    """The last element of ``path``, blank-padded to DIRSIZ characters."""
    name = path.rsplit("/", 1)[-1]
    return name if len(name) >= DIRSIZ else name.ljust(DIRSIZ)


def _line(name: str, st: Stat) -> str:
    return f"{name} {int(st.type)} {st.ino} {st.size}\n"


def ls(fs: FileSystem, path: str, out: TextIO) -> None:
    """List a file, or every entry of a directory, as name type inode size."""
    ip = _lookup(fs, path)
    try:
        st = _stat_inode(fs, ip)
        if st.type == FileType.FILE:
            out.write(_line(fmtname(path), st))
        elif st.type == FileType.DIR:
            if len(path) + 1 + DIRSIZ + 1 > _PATHBUF:
                out.write("ls: path too long\n")
                return
            off = 0
            while len(raw := _read(fs, ip, off, DIRENT_SIZE)) == DIRENT_SIZE:
                off += DIRENT_SIZE
                de = DirEntry.unpack(raw)
                if de.inum == 0:
                    continue
                name = f"{path}/{de.name}"
                try:
                    est = _stat(fs, name)
                except FileNotFoundError:
                    out.write(f"ls: cannot stat {name}\n")
                    continue
                out.write(_line(fmtname(name), est))
    finally:
        _put(fs, ip)


def _mount(image: str) -> FileSystem:
    return FileSystem.mount(MemoryDisk.from_file(image))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="v6fs-tools")
    sub = parser.add_subparsers(dest="command", required=True)
    for command in ("cat", "ls"):
        p = sub.add_parser(command)
        p.add_argument("image")
        p.add_argument("paths", nargs="*")
    p = sub.add_parser("echo")
    p.add_argument("words", nargs=argparse.REMAINDER)
    args = parser.parse_args(sys.argv[1:] if argv is None else list(argv))

    if args.command == "echo":
        sys.stdout.write(echo(args.words))
        return 0

    try:
        fs = _mount(args.image)
    except OSError as exc:
        print(f"{args.image}: {exc.strerror}", file=sys.stderr)
        return 1

    if args.command == "cat":
        sys.stdout.flush()
        out = sys.stdout.buffer
        if not args.paths:
            while chunk := sys.stdin.buffer.read(_CHUNK):
                out.write(chunk)
            out.flush()
            return 0
        for path in args.paths:
            try:
                cat(fs, [path], out)
            except FileNotFoundError:
                out.flush()
                print(f"cat: cannot open {path}")
                return 1
        out.flush()
        return 0

    status = 0
    for path in args.paths or ["."]:
        try:
            ls(fs, path, sys.stdout)
        except FileNotFoundError:
            print(f"ls: cannot open {path}", file=sys.stderr)
            status = 1
    return status