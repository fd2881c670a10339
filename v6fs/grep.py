"""A small grep that understands the ^ . * $ operators."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from typing import BinaryIO

_BUFSIZE = 1024


def _matchhere(re: str, ri: int, text: str, ti: int) -> bool:
    """Match ``re[ri:]`` at the beginning of ``text[ti:]``."""
    if ri == len(re):
        return True
    if ri + 1 < len(re) and re[ri + 1] == "*":
        return _matchstar(re[ri], re, ri + 2, text, ti)
    if re[ri] == "$" and ri + 1 == len(re):
        return ti == len(text)
    if ti < len(text) and (re[ri] == "." or re[ri] == text[ti]):
        return _matchhere(re, ri + 1, text, ti + 1)
    return False


def _matchstar(c: str, re: str, ri: int, text: str, ti: int) -> bool:
    """Match ``c*`` followed by ``re[ri:]`` at the beginning of ``text[ti:]``."""
    while True:
        if _matchhere(re, ri, text, ti):
            return True
        if ti < len(text) and (text[ti] == c or c == "."):
            ti += 1
        else:
            return False


def match(re: str, text: str) -> bool:
    """True if the pattern ``re`` occurs anywhere in ``text``."""
    if re.startswith("^"):
        return _matchhere(re, 1, text, 0)
    return any(_matchhere(re, 0, text, i) for i in range(len(text) + 1))


def grep(pattern: str, stream: BinaryIO) -> Iterator[bytes]:
    """Yield each complete line of ``stream`` that matches ``pattern``.

    Lines are returned with their newline. A trailing line without a
    newline is ignored, and so is a run of text that fills the whole
    line buffer without a newline.
    """
    buf = b""
    while True:
        chunk = stream.read(_BUFSIZE - 1 - len(buf))
        if not chunk:
            break
        buf += chunk
        *lines, rest = buf.split(b"\n")
        for line in lines:
            if match(pattern, line.decode("latin-1")):
                yield line + b"\n"
        buf = rest if lines else b""


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("usage: grep pattern [file ...]", file=sys.stderr)
        return 1
    pattern, files = args[0], args[1:]
    out = sys.stdout.buffer
    if not files:
        out.writelines(grep(pattern, sys.stdin.buffer))
        out.flush()
        return 0
    for name in files:
        try:
            stream = open(name, "rb")
        except OSError:
            out.flush()
            print(f"grep: cannot open {name}")
            return 1
        with stream:
            out.writelines(grep(pattern, stream))
    out.flush()
    return 0