"""Buffer cache of disk blocks, each buffer guarded by a sleep lock."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from .layout import BSIZE


class BufferError_(Exception):
    """The buffer cache was misused or ran out of buffers."""


class _SleepLock:
    """A long-term lock owned by one thread at a time."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._cond = threading.Condition()
        self._locked = False
        self._owner: int | None = None

    def acquire(self) -> None:
        with self._cond:
            while self._locked:
                self._cond.wait()
            self._locked = True
            self._owner = threading.get_ident()

    def release(self) -> None:
        with self._cond:
            self._locked = False
            self._owner = None
            self._cond.notify_all()

    def holding(self) -> bool:
        with self._cond:
            return self._locked and self._owner == threading.get_ident()


@dataclass(eq=False)
class Buf:
    """A cached copy of one disk block."""

    blockno: int = -1
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))
    valid: bool = False
    refcnt: int = 0
    lock: _SleepLock = field(default_factory=lambda: _SleepLock("buffer"), repr=False)


class BufferCache:
    """A fixed set of buffers, recycled least recently used first."""

    def __init__(self, disk, nbuf: int) -> None:
        if nbuf < 1:
            raise ValueError("the cache needs at least one buffer")
        self.disk = disk
        self._lock = threading.Lock()
        # Most recently released first.
        self._lru: list[Buf] = [Buf() for _ in range(nbuf)]

    def _bget(self, blockno: int) -> Buf:
        with self._lock:
            for buf in self._lru:
                if buf.blockno == blockno:
                    buf.refcnt += 1
                    break
            else:
                for buf in reversed(self._lru):
                    if buf.refcnt == 0:
                        buf.blockno = blockno
                        buf.valid = False
                        buf.refcnt = 1
                        break
                else:
                    raise BufferError_("bget: no buffers")
        buf.lock.acquire()
        return buf

    def bread(self, blockno: int) -> Buf:
        """Return a locked buffer with the contents of the block."""
        buf = self._bget(blockno)
        if not buf.valid:
            try:
                buf.data[:] = self.disk.read_block(blockno)
            except Exception:
                self.brelse(buf)
                raise
            buf.valid = True
        return buf

    def bwrite(self, buf: Buf) -> None:
        """Write the buffer's contents to disk; the buffer must be locked."""
        if not buf.lock.holding():
            raise BufferError_("bwrite")
        self.disk.write_block(buf.blockno, bytes(buf.data))

    def brelse(self, buf: Buf) -> None:
        """Release a locked buffer, making it the most recently used."""
        if not buf.lock.holding():
            raise BufferError_("brelse")
        buf.lock.release()
        with self._lock:
            buf.refcnt -= 1
            if buf.refcnt == 0:
                self._lru.remove(buf)
                self._lru.insert(0, buf)

    def bpin(self, buf: Buf) -> None:
        with self._lock:
            buf.refcnt += 1

    def bunpin(self, buf: Buf) -> None:
        with self._lock:
            buf.refcnt -= 1

    @contextmanager
    def block(self, blockno: int) -> Iterator[Buf]:
        """Hold the buffer for a block for the length of a with-block."""
        buf = self.bread(blockno)
        try:
            yield buf
        finally:
            self.brelse(buf)