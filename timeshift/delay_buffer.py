# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 NVIDIA Corporation

import io
import logging
import threading
from collections import deque

from timeshift import metrics
from timeshift.chunk import (
    Chunk,
    MalformedChunkError,
    Sink,
    Source,
    read_chunk,
    write_chunk,
)
from timeshift.clock import Clock, wall_clock_us
from timeshift.fifo import BytesLike, ByteFifo

logger = logging.getLogger(__name__)


class DelayBuffer(io.RawIOBase):
    """
    A binary stream which only returns written bytes once `delay_us` has passed
    since they were written. Used to time shift a live stream for playback.

    Every `write` is stamped with the current time and stored as one chunk in the
    underlying `stream`. Reads decode chunks from the same stream, hold them in
    a pending queue until they are old enough and then move them into a head
    buffer from which reads are served, possibly across several reads.

    A read while nothing is old enough returns 0 bytes; it neither blocks nor
    signals the end of the stream.

    Chunk timestamps are assumed to be non-decreasing in write order: a chunk
    which is not yet eligible holds back all chunks written after it.
    """

    def __init__(
        self, delay_us: int, stream: Sink | Source, clock: Clock = wall_clock_us
    ):
        """
        :param delay_us: Delay in microseconds before written bytes become readable.
        :param stream: Stores the encoded chunks. Must support sequential `write`
            and sequential `read` with independent positions, e.g. `ByteFifo` or
            `FileStream`. Owned by the caller.
        :param clock: Returns the current time in microseconds.
        """
        super().__init__()
        self._pending: deque[Chunk] = deque()
        self._head = ByteFifo()
        self._last_timestamp_us: int | None = None
        self._warned_clock_regression = False
        self._lock = threading.Lock()

        if delay_us < 0:
            raise ValueError(f"Delay must be non-negative, got {delay_us}us.")
        self.delay_us = delay_us
        self.stream = stream
        self.clock = clock

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return True

    @property
    def pending_chunks(self) -> int:
        return len(self._pending)

    @property
    def available(self) -> int:
        """Number of bytes which are released and can be read without ingesting."""
        return len(self._head)

    def write(self, data: BytesLike) -> int:
        """
        Stamp `data` with the current time and store it. Raises whatever the
        underlying stream raises; in that case nothing was accepted.
        """
        self._check_open()
        payload = bytes(data)
        with self._lock:
            timestamp_us = self.clock()
            last_us = self._last_timestamp_us
            if last_us is not None and timestamp_us < last_us:
                if not self._warned_clock_regression:
                    logger.warning(
                        "Clock went backwards by %dus, stamping chunks with the "
                        "last written time instead",
                        last_us - timestamp_us,
                    )
                    self._warned_clock_regression = True
                timestamp_us = last_us

            chunk = Chunk(timestamp_us=timestamp_us, payload=payload)
            write_chunk(self.stream, chunk)
            self._last_timestamp_us = timestamp_us

        metrics.CHUNKS_WRITTEN.inc()
        metrics.BYTES_WRITTEN.inc(len(payload))
        return len(payload)

    def readinto(self, dest: BytesLike) -> int:
        """
        Read up to `len(dest)` released bytes into `dest`.

        :return: Number of bytes read, 0 if no bytes have left their delay yet.
        """
        self._check_open()
        with self._lock:
            self._ingest()
            size = self._head.readinto(dest)
        self._account_read(size)
        return size

    def read(self, size: int = -1) -> bytes:
        """Read up to `size` released bytes, all of them if `size` is negative."""
        self._check_open()
        with self._lock:
            self._ingest()
            data = self._head.read(size)
        self._account_read(len(data))
        return data

    def readall(self) -> bytes:
        return self.read(-1)

    def close(self) -> None:
        if not self.closed:
            with self._lock:
                metrics.PENDING_CHUNKS.dec(len(self._pending))
                metrics.HEAD_BYTES.dec(len(self._head))
                self._pending.clear()
                self._head.clear()
        super().close()

    def can_read(self, chunk: Chunk) -> bool:
        return chunk.timestamp_us <= self.clock() - self.delay_us

    def _ingest(self) -> None:
        self._fill_pending()
        self._fill_head()

    def _fill_pending(self) -> None:
        while True:
            try:
                chunk = read_chunk(self.stream)
            except MalformedChunkError:
                metrics.DECODE_ERRORS.inc()
                raise
            if chunk is None:
                return

            self._pending.append(chunk)
            metrics.PENDING_CHUNKS.inc()

            # chunks behind this one are at least as young, leave them in storage
            if not self.can_read(chunk):
                return

    def _fill_head(self) -> None:
        promoted = 0
        while self._pending and self.can_read(self._pending[0]):
            self._head.write(self._pending[0].payload)
            chunk = self._pending.popleft()
            promoted += 1
            metrics.PENDING_CHUNKS.dec()
            metrics.HEAD_BYTES.inc(len(chunk.payload))

        if promoted:
            metrics.CHUNKS_PROMOTED.inc(promoted)
            logger.debug(
                "Released %d chunks, %d bytes readable, %d chunks pending",
                promoted,
                len(self._head),
                len(self._pending),
            )

    def _account_read(self, size: int) -> None:
        if size:
            metrics.BYTES_READ.inc(size)
            metrics.HEAD_BYTES.dec(size)

    def _check_open(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed DelayBuffer.")
