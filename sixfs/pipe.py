"""A bounded byte pipe with a read end and a write end."""

from __future__ import annotations

import threading

PIPESIZE = 512


class PipeError(Exception):
    """The other end of the pipe is closed or the caller was killed."""


class Pipe:
    """A ring buffer shared by one reader side and one writer side.

    Writers block while the buffer is full and readers block while it is
    empty and the write end is still open.
    """

    def __init__(self, size: int = PIPESIZE) -> None:
        if size < 1:
            raise ValueError("a pipe needs room for at least one byte")
        self.size = size
        self._data = bytearray(size)
        self.nread = 0
        self.nwrite = 0
        self.readopen = True
        self.writeopen = True
        self._killed = False
        self._cond = threading.Condition()

    def write(self, data: bytes) -> int:
        """Write all of ``data``, blocking while the pipe is full."""
        written = 0
        with self._cond:
            while written < len(data):
                if not self.readopen or self._killed:
                    raise PipeError("write to a pipe with no reader")
                if self.nwrite == self.nread + self.size:
                    self._cond.notify_all()
                    self._cond.wait()
                    continue
                self._data[self.nwrite % self.size] = data[written]
                self.nwrite += 1
                written += 1
            self._cond.notify_all()
        return written

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes; empty once the pipe is drained and the writer closed."""
        out = bytearray()
        with self._cond:
            while self.nread == self.nwrite and self.writeopen:
                if self._killed:
                    raise PipeError("read interrupted")
                self._cond.wait()
            while len(out) < n and self.nread != self.nwrite:
                out.append(self._data[self.nread % self.size])
                self.nread += 1
            self._cond.notify_all()
        return bytes(out)

    def close(self, writable: bool) -> None:
        """Close the write end if ``writable``, otherwise the read end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        """True once both ends are closed."""
        with self._cond:
            return not self.readopen and not self.writeopen

    def kill(self) -> None:
        """Make blocked and later reads and writes fail."""
        with self._cond:
            self._killed = True
            self._cond.notify_all()