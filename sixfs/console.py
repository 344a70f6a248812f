"""Line-buffered console input with erase and kill processing."""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable

INPUT_BUF_SIZE = 128
BACKSPACE = 0x100


def _ctrl(x: str) -> int:
    return ord(x) - ord("@")


_CTRL_D = _ctrl("D")
_CTRL_H = _ctrl("H")
_CTRL_P = _ctrl("P")
_CTRL_U = _ctrl("U")
_DELETE = 0x7F
_NEWLINE = ord("\n")
_RETURN = ord("\r")


def _stdout_write(data: bytes) -> None:
    sys.stdout.write(data.decode("latin-1"))
    sys.stdout.flush()


class Console:
    """Console input and output.

    Input characters arrive through :meth:`interrupt`; reads return at most
    one line. Control-H and delete erase a character, control-U erases the
    line, control-D marks end of file and control-P asks for a process dump.
    """

    def __init__(
        self,
        output: Callable[[bytes], None] | None = None,
        on_process_dump: Callable[[], None] | None = None,
    ) -> None:
        self._output = output if output is not None else _stdout_write
        self._on_process_dump = on_process_dump
        self._buf = bytearray(INPUT_BUF_SIZE)
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index
        self._killed = False
        self._cond = threading.Condition()

    def _putc(self, c: int) -> None:
        if c == BACKSPACE:
            self._output(b"\b \b")
        else:
            self._output(bytes([c & 0xFF]))

    def interrupt(self, c: int | str) -> None:
        """Handle one input character."""
        if isinstance(c, str):
            c = ord(c)
        with self._cond:
            if c == _CTRL_P:
                if self._on_process_dump is not None:
                    self._on_process_dump()
            elif c == _CTRL_U:
                while (
                    self._e != self._w
                    and self._buf[(self._e - 1) % INPUT_BUF_SIZE] != _NEWLINE
                ):
                    self._e -= 1
                    self._putc(BACKSPACE)
            elif c in (_CTRL_H, _DELETE):
                if self._e != self._w:
                    self._e -= 1
                    self._putc(BACKSPACE)
            elif c != 0 and self._e - self._r < INPUT_BUF_SIZE:
                if c == _RETURN:
                    c = _NEWLINE
                self._putc(c)
                self._buf[self._e % INPUT_BUF_SIZE] = c & 0xFF
                self._e += 1
                if (
                    c in (_NEWLINE, _CTRL_D)
                    or self._e - self._r == INPUT_BUF_SIZE
                ):
                    self._w = self._e
                    self._cond.notify_all()

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes, returning at the end of a line or at end of file."""
        target = n
        out = bytearray()
        with self._cond:
            while n > 0:
                while self._r == self._w:
                    if self._killed:
                        raise InterruptedError("console read interrupted")
                    self._cond.wait()
                c = self._buf[self._r % INPUT_BUF_SIZE]
                self._r += 1
                if c == _CTRL_D:
                    if n < target:
                        # Keep the end of file for the next read.
                        self._r -= 1
                    break
                out.append(c)
                n -= 1
                if c == _NEWLINE:
                    break
        return bytes(out)

    def write(self, data: bytes) -> int:
        """Send ``data`` to the output; returns the number of bytes written."""
        for c in data:
            self._output(bytes([c]))
        return len(data)

    def kill(self) -> None:
        """Make blocked and later reads fail."""
        with self._cond:
            self._killed = True
            self._cond.notify_all()