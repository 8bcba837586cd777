"""Thread-safe pool of zeroed scratch buffers for key, prefix and body bytes."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


def wipe(buffer: bytearray | memoryview | None) -> None:
    """Overwrite *buffer* with zero bytes in place."""
    if buffer is None:
        return
    length = len(buffer)
    if length:
        buffer[:] = bytes(length)


class ScratchBufferPool:
    """Hands out ``bytearray`` scratch buffers and takes them back zeroed.

    Buffers are leased through :meth:`lease`, which guarantees the buffer
    is wiped, emptied and returned to the pool on every exit path,
    including exceptions and task cancellation.

    Parameters
    ----------
    max_retained:
        Upper bound on idle buffers kept for reuse.  Extra buffers are
        wiped and dropped.
    """

    def __init__(self, max_retained: int = 32) -> None:
        self._lock = threading.Lock()
        self._free: list[bytearray] = []
        self._max_retained = max_retained

    @property
    def idle(self) -> int:
        """Number of buffers currently waiting in the pool."""
        with self._lock:
            return len(self._free)

    @contextmanager
    def lease(self) -> Iterator[bytearray]:
        """Borrow an empty buffer for the duration of a ``with`` block."""
        buffer = self._acquire()
        try:
            yield buffer
        finally:
            self._release(buffer)

    def _acquire(self) -> bytearray:
        with self._lock:
            if self._free:
                return self._free.pop()
        return bytearray()

    def _release(self, buffer: bytearray) -> None:
        # Zero before clearing, clearing alone frees without scrubbing.
        wipe(buffer)
        buffer.clear()
        with self._lock:
            if len(self._free) < self._max_retained:
                self._free.append(buffer)


default_pool = ScratchBufferPool()
