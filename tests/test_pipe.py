import threading

import pytest

from sixfs.pipe import PIPESIZE, Pipe, PipeError


def test_write_then_read_round_trip():
    p = Pipe()
    assert p.write(b"hello") == 5
    assert p.read(100) == b"hello"


def test_partial_read_leaves_rest():
    p = Pipe()
    p.write(b"abcdef")
    assert p.read(2) == b"ab"
    assert p.read(10) == b"cdef"


def test_ring_wraps_around():
    p = Pipe(4)
    for chunk in (b"abc", b"def", b"ghi"):
        assert p.write(chunk) == len(chunk)
        assert p.read(10) == chunk


def test_read_after_writer_closed_returns_empty():
    p = Pipe()
    p.write(b"x")
    p.close(writable=True)
    assert p.read(10) == b"x"
    assert p.read(10) == b""


def test_write_without_reader_raises():
    p = Pipe()
    p.close(writable=False)
    with pytest.raises(PipeError):
        p.write(b"data")


def test_closed_after_both_ends():
    p = Pipe()
    p.close(writable=True)
    assert not p.closed
    p.close(writable=False)
    assert p.closed


def test_default_size():
    assert Pipe().size == PIPESIZE


def test_invalid_size():
    with pytest.raises(ValueError):
        Pipe(0)


def test_full_pipe_blocks_writer_until_drained():
    p = Pipe(8)
    payload = bytes(range(40))
    result = {}

    def writer():
        result["n"] = p.write(payload)
        p.close(writable=True)

    t = threading.Thread(target=writer)
    t.start()
    received = bytearray()
    while True:
        chunk = p.read(5)
        if not chunk:
            break
        received += chunk
    t.join(timeout=5)
    assert not t.is_alive()
    assert result["n"] == len(payload)
    assert bytes(received) == payload


def test_reader_blocks_until_data():
    p = Pipe()
    timer = threading.Timer(0.1, p.write, args=(b"late",))
    timer.start()
    try:
        assert p.read(10) == b"late"
    finally:
        timer.join(timeout=5)


def test_kill_wakes_blocked_reader():
    p = Pipe()
    timer = threading.Timer(0.1, p.kill)
    timer.start()
    try:
        with pytest.raises(PipeError):
            p.read(10)
    finally:
        timer.join(timeout=5)


def test_kill_makes_write_fail():
    p = Pipe()
    p.kill()
    with pytest.raises(PipeError):
        p.write(b"a")