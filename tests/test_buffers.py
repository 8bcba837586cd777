"""Tests for the scratch buffer pool."""

import threading

import pytest

from signed_webhooks.webhook import buffers
from signed_webhooks.webhook.buffers import ScratchBufferPool, wipe


def test_wipe_zeroes_in_place():
    buffer = bytearray(b"secret")
    view = memoryview(buffer)

    wipe(buffer)

    assert buffer == bytearray(6)
    assert bytes(view) == b"\x00" * 6


def test_wipe_accepts_memoryview_and_none():
    buffer = bytearray(b"abcdef")

    wipe(memoryview(buffer)[2:4])
    wipe(None)

    assert buffer == bytearray(b"ab\x00\x00ef")


def test_lease_yields_an_empty_buffer():
    pool = ScratchBufferPool()

    with pool.lease() as buffer:
        assert buffer == bytearray()
        buffer += b"key material"


def test_buffer_is_zeroed_before_it_is_released(monkeypatch):
    pool = ScratchBufferPool()
    seen: list[bytes] = []

    def recording_wipe(buffer):
        wipe(buffer)
        seen.append(bytes(buffer))

    monkeypatch.setattr(buffers, "wipe", recording_wipe)

    with pool.lease() as buffer:
        buffer += b"key material"

    assert seen == [b"\x00" * len(b"key material")]
    assert buffer == bytearray()
    assert pool.idle == 1


def test_buffer_is_reused():
    pool = ScratchBufferPool()

    with pool.lease() as first:
        pass
    with pool.lease() as second:
        pass

    assert first is second


def test_buffer_returns_on_exception():
    pool = ScratchBufferPool()

    with pytest.raises(RuntimeError):
        with pool.lease() as buffer:
            buffer += b"secret"
            raise RuntimeError("boom")

    assert buffer == bytearray()
    assert pool.idle == 1


def test_retained_buffers_are_capped():
    pool = ScratchBufferPool(max_retained=2)

    with pool.lease(), pool.lease(), pool.lease():
        pass

    assert pool.idle == 2


def test_concurrent_leases_never_share_a_buffer():
    pool = ScratchBufferPool(max_retained=4)
    errors: list[str] = []
    barrier = threading.Barrier(8)

    def worker(marker: int) -> None:
        barrier.wait()
        for _ in range(200):
            with pool.lease() as buffer:
                buffer += bytes([marker]) * 16
                if buffer != bytearray(bytes([marker]) * 16):
                    errors.append(f"buffer shared with another thread ({marker})")

    threads = [threading.Thread(target=worker, args=(i + 1,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert pool.idle <= 4
