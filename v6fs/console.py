"""Console formatting, the text screen and line-edited keyboard input."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable

from .layout import KernelPanic

BACKSPACE = 0x100
INPUT_BUF = 128
COLS = 80
ROWS = 25
_ATTR = 0x0700  # light grey on black

_NL = ord("\n")
_CR = ord("\r")


def ctrl(x: str) -> int:
    """Code of Control-x."""
    return ord(x) - ord("@")


def _int32(value: int) -> int:
    value = int(value) & 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def _printint(value: int, base: int, signed: bool, digits: str) -> str:
    xx = _int32(value)
    negative = signed and xx < 0
    x = -xx if negative else xx & 0xFFFFFFFF
    out = ""
    while True:
        out = digits[x % base] + out
        x //= base
        if x == 0:
            break
    return "-" + out if negative else out


def _format(fmt: str, args: tuple, digits: str, with_char: bool) -> str:
    remaining = iter(args)

    def next_arg():
        try:
            return next(remaining)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    out: list[str] = []
    chars = iter(fmt)
    for c in chars:
        if c != "%":
            out.append(c)
            continue
        c = next(chars, None)
        if c is None:
            break
        if c == "d":
            out.append(_printint(next_arg(), 10, True, digits))
        elif c in "xp":
            out.append(_printint(next_arg(), 16, False, digits))
        elif c == "s":
            s = next_arg()
            out.append("(null)" if s is None else str(s))
        elif c == "c" and with_char:
            ch = next_arg()
            out.append(chr(ch & 0xFF) if isinstance(ch, int) else str(ch)[:1])
        elif c == "%":
            out.append("%")
        else:
            # Unknown sequences are printed to draw attention.
            out.append("%" + c)
    return "".join(out)


def format_kernel(fmt: str, *args) -> str:
    """Format like the kernel printer: %d, %x, %p, %s, lower-case hex."""
    if fmt is None:
        raise KernelPanic("null fmt")
    return _format(fmt, args, "0123456789abcdef", False)


def format_user(fmt: str, *args) -> str:
    """Format like the user printer: %d, %x, %p, %s, %c, upper-case hex."""
    return _format(fmt, args, "0123456789ABCDEF", True)


class CgaScreen:
    """An 80x25 text screen with a cursor; scrolls when the 24th row fills."""

    def __init__(self) -> None:
        self.cells = [0] * (COLS * ROWS)
        self.pos = 0

    def putc(self, c: int | str) -> None:
        code = ord(c) if isinstance(c, str) else c
        pos = self.pos
        if code == _NL:
            pos += COLS - pos % COLS
        elif code == BACKSPACE:
            if pos > 0:
                pos -= 1
        else:
            self.cells[pos] = (code & 0xFF) | _ATTR
            pos += 1

        if pos < 0 or pos > ROWS * COLS:
            raise KernelPanic("pos under/overflow")

        if pos // COLS >= 24:
            self.cells[:23 * COLS] = self.cells[COLS:24 * COLS]
            pos -= COLS
            self.cells[pos:24 * COLS] = [0] * (24 * COLS - pos)

        self.pos = pos
        self.cells[pos] = ord(" ") | _ATTR

    def lines(self) -> list[str]:
        """The text of each row, trailing blanks removed."""
        text = "".join(chr((cell & 0xFF) or 0x20) for cell in self.cells)
        return [text[row * COLS:(row + 1) * COLS].rstrip() for row in range(ROWS)]


class ConsoleInput:
    """The console's line buffer: typed characters are edited, then read a line at a time."""

    def __init__(self, echo: Callable[[int], None] | None = None):
        self._echo = echo if echo is not None else (lambda c: None)
        self._buf = bytearray(INPUT_BUF)
        self.r = 0  # read index
        self.w = 0  # write index
        self.e = 0  # edit index
        self._cond = threading.Condition()

    def feed(self, chars: str | Iterable[int]) -> bool:
        """Handle typed characters; return True if a process listing was asked for."""
        codes = [ord(ch) for ch in chars] if isinstance(chars, str) else list(chars)
        procdump = False
        with self._cond:
            for c in codes:
                if c == ctrl("P"):
                    procdump = True
                elif c == ctrl("U"):
                    while self.e != self.w and self._buf[(self.e - 1) % INPUT_BUF] != _NL:
                        self.e -= 1
                        self._echo(BACKSPACE)
                elif c in (ctrl("H"), 0x7F):
                    if self.e != self.w:
                        self.e -= 1
                        self._echo(BACKSPACE)
                elif c != 0 and self.e - self.r < INPUT_BUF:
                    c = _NL if c == _CR else c
                    self._buf[self.e % INPUT_BUF] = c & 0xFF
                    self.e += 1
                    self._echo(c)
                    if c == _NL or c == ctrl("D") or self.e == self.r + INPUT_BUF:
                        self.w = self.e
                        self._cond.notify_all()
        return procdump

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes, stopping after a newline; b'' at end of input."""
        target = n
        out = bytearray()
        with self._cond:
            while n > 0:
                while self.r == self.w:
                    self._cond.wait()
                c = self._buf[self.r % INPUT_BUF]
                self.r += 1
                if c == ctrl("D"):
                    if n < target:
                        # Keep ^D so the next read returns nothing.
                        self.r -= 1
                    break
                out.append(c)
                n -= 1
                if c == _NL:
                    break
        return bytes(out)