"""Redo log that groups file-system updates into atomic transactions."""

from __future__ import annotations

import struct
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .bio import Buf, BufferCache
from .layout import BSIZE, Superblock

_INT = struct.Struct("<i")


class LogError(Exception):
    """The log was misused or its transaction grew too large."""


class Log:
    """Commits a transaction once no file-system operation is outstanding.

    On disk the log is a header block holding the count and the home block
    numbers, followed by copies of those blocks.
    """

    def __init__(
        self, cache: BufferCache, sb: Superblock, logsize: int, maxopblocks: int
    ) -> None:
        if _INT.size * (logsize + 1) >= BSIZE:
            raise LogError("initlog: too big logheader")
        if maxopblocks > logsize:
            raise LogError("an operation may not need more blocks than the log holds")
        self._cache = cache
        self.start = sb.logstart
        self.size = sb.nlog
        self.logsize = logsize
        self.maxopblocks = maxopblocks
        self.outstanding = 0
        self.committing = False
        self._blocks: list[int] = []
        self._cond = threading.Condition()
        self._recover()

    @property
    def pending(self) -> tuple[int, ...]:
        """Home block numbers logged in the current transaction."""
        with self._cond:
            return tuple(self._blocks)

    def _read_head(self) -> None:
        with self._cache.block(self.start) as buf:
            (n,) = _INT.unpack_from(buf.data, 0)
            if not 0 <= n <= self.logsize:
                raise LogError(f"corrupt log header: {n} blocks")
            self._blocks = list(struct.unpack_from(f"<{n}i", buf.data, _INT.size))

    def _write_head(self) -> None:
        with self._cache.block(self.start) as buf:
            _INT.pack_into(buf.data, 0, len(self._blocks))
            struct.pack_into(
                f"<{len(self._blocks)}i", buf.data, _INT.size, *self._blocks
            )
            self._cache.bwrite(buf)

    def _install_trans(self, recovering: bool) -> None:
        for tail, blockno in enumerate(self._blocks):
            lbuf = self._cache.bread(self.start + tail + 1)
            dbuf = self._cache.bread(blockno)
            dbuf.data[:] = lbuf.data
            self._cache.bwrite(dbuf)
            if not recovering:
                self._cache.bunpin(dbuf)
            self._cache.brelse(lbuf)
            self._cache.brelse(dbuf)

    def _recover(self) -> None:
        self._read_head()
        self._install_trans(recovering=True)
        self._blocks = []
        self._write_head()

    def _write_log(self) -> None:
        for tail, blockno in enumerate(self._blocks):
            to = self._cache.bread(self.start + tail + 1)
            src = self._cache.bread(blockno)
            to.data[:] = src.data
            self._cache.bwrite(to)
            self._cache.brelse(src)
            self._cache.brelse(to)

    def _commit(self) -> None:
        if self._blocks:
            self._write_log()
            self._write_head()  # the real commit point
            self._install_trans(recovering=False)
            self._blocks = []
            self._write_head()

    def begin_op(self) -> None:
        """Start a file-system operation, waiting while the log is busy or full."""
        with self._cond:
            while (
                self.committing
                or len(self._blocks) + (self.outstanding + 1) * self.maxopblocks
                > self.logsize
            ):
                self._cond.wait()
            self.outstanding += 1

    def end_op(self) -> None:
        """Finish an operation; the last one out commits."""
        with self._cond:
            self.outstanding -= 1
            if self.committing:
                raise LogError("log.committing")
            do_commit = self.outstanding == 0
            if do_commit:
                self.committing = True
            else:
                self._cond.notify_all()
        if do_commit:
            try:
                self._commit()
            finally:
                with self._cond:
                    self.committing = False
                    self._cond.notify_all()

    def log_write(self, buf: Buf) -> None:
        """Record a modified buffer in the transaction and pin it in the cache."""
        with self._cond:
            n = len(self._blocks)
            if n >= self.logsize or n >= self.size - 1:
                raise LogError("too big a transaction")
            if self.outstanding < 1:
                raise LogError("log_write outside of trans")
            if buf.blockno not in self._blocks:
                self._cache.bpin(buf)
                self._blocks.append(buf.blockno)

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Run the body of a with-block as one file-system operation."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()