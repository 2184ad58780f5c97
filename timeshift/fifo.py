# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 NVIDIA Corporation

from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]


class ByteFifo:
    """
    An unbounded first-in-first-out byte buffer with independent read and write
    cursors: bytes come out of `read` in the order they went into `write`.

    Unlike `io.BytesIO`, writing does not move the read position, so one instance
    can serve both as the sink and the source of a stream.
    """

    def __init__(self, data: BytesLike = b""):
        self._buffer = bytearray(data)
        self._offset = 0

    def __len__(self) -> int:
        return len(self._buffer) - self._offset

    def write(self, data: BytesLike) -> int:
        self._buffer += data
        return len(data)

    def read(self, size: int = -1) -> bytes:
        available = len(self)
        if size is None or size < 0 or size > available:
            size = available
        data = bytes(self._buffer[self._offset : self._offset + size])
        self._consume(size)
        return data

    def readinto(self, dest: BytesLike) -> int:
        with memoryview(dest) as view:
            size = min(len(view), len(self))
            view[:size] = self._buffer[self._offset : self._offset + size]
        self._consume(size)
        return size

    def clear(self) -> None:
        self._buffer = bytearray()
        self._offset = 0

    def _consume(self, size: int) -> None:
        self._offset += size
        if self._offset == len(self._buffer):
            # drained: drop the backing storage instead of growing it forever
            self.clear()
        elif self._offset > len(self._buffer) // 2:
            del self._buffer[: self._offset]
            self._offset = 0
