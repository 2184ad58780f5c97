# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 NVIDIA Corporation

import io
import shutil
import threading
import time

import pytest
from timeshift import metrics
from timeshift.chunk import HEADER, MalformedChunkError
from timeshift.clock import ManualClock
from timeshift.delay_buffer import DelayBuffer
from timeshift.fifo import ByteFifo
from timeshift.storage import FileStream

SEC = 1_000_000


def read_expects(buffer: DelayBuffer, expected: bytes, size: int) -> None:
    dest = bytearray(len(expected))
    assert buffer.readinto(dest) == size
    assert bytes(dest) == expected


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start_us=1_700_000_000 * SEC)


def test_reading(clock):
    start = clock()
    buffer = DelayBuffer(20 * SEC, ByteFifo(), clock=clock)

    samples = [
        (start + 0 * SEC, b"ab"),
        (start + 10 * SEC, b"cd"),
        (start + 20 * SEC, b"ef"),
        (start + 25 * SEC, b"ghij"),
    ]
    for timestamp_us, data in samples:
        clock.set(timestamp_us)
        assert buffer.write(data) == len(data)

    clock.set(start)
    read_expects(buffer, b"\x00\x00", 0)

    clock.set(start + 21 * SEC)
    read_expects(buffer, b"ab\x00", 2)

    clock.set(start + 51 * SEC)
    read_expects(buffer, b"c", 1)
    read_expects(buffer, b"d", 1)
    read_expects(buffer, b"efgh", 4)
    read_expects(buffer, b"ij\x00", 2)
    read_expects(buffer, b"\x00" * 5, 0)


def test_readinto_returns_number_of_bytes(clock):
    buffer = DelayBuffer(SEC, ByteFifo(), clock=clock)
    buffer.write(b"abc")

    dest = bytearray(3)
    assert buffer.readinto(dest) == 0
    assert dest == bytearray(3)

    clock.advance(SEC)
    assert buffer.readinto(dest) == 3
    assert dest == bytearray(b"abc")


def test_release_is_inclusive_of_delay(clock):
    buffer = DelayBuffer(5 * SEC, ByteFifo(), clock=clock)
    buffer.write(b"x")

    clock.advance(5 * SEC - 1)
    assert buffer.read() == b""
    clock.advance(1)
    assert buffer.read() == b"x"


def test_zero_delay_releases_immediately(clock):
    buffer = DelayBuffer(0, ByteFifo(), clock=clock)
    buffer.write(b"now")
    assert buffer.read() == b"now"


def test_empty_destination_is_a_noop(clock):
    buffer = DelayBuffer(SEC, ByteFifo(), clock=clock)
    buffer.write(b"abc")
    clock.advance(SEC)

    for _ in range(3):
        assert buffer.readinto(bytearray()) == 0
    assert buffer.available == 3
    assert buffer.read() == b"abc"


def test_quiescent_read_returns_nothing(clock):
    buffer = DelayBuffer(SEC, ByteFifo(), clock=clock)
    assert buffer.read(10) == b""

    buffer.write(b"abc")
    for _ in range(3):
        assert buffer.read(10) == b""
    assert buffer.pending_chunks == 1


def test_no_early_release_and_order_preservation(clock):
    delay_us = 7 * SEC
    buffer = DelayBuffer(delay_us, ByteFifo(), clock=clock)
    written: list[tuple[int, bytes]] = []
    received = b""

    for step in range(40):
        if step % 3 != 2:
            data = bytes([step]) * (step % 5 + 1)
            buffer.write(data)
            written.append((clock(), data))

        received += buffer.read(3)
        released = b"".join(
            data for timestamp_us, data in written if timestamp_us + delay_us <= clock()
        )
        assert released.startswith(received)

        clock.advance(SEC)

    clock.advance(delay_us)
    received += buffer.read()
    assert received == b"".join(data for _, data in written)
    assert buffer.pending_chunks == 0
    assert buffer.available == 0


def test_partial_reads_keep_remainder(clock):
    buffer = DelayBuffer(SEC, ByteFifo(), clock=clock)
    buffer.write(b"0123456789")
    clock.advance(SEC)

    assert buffer.read(4) == b"0123"
    assert buffer.available == 6
    buffer.write(b"abc")
    assert buffer.read(4) == b"4567"
    clock.advance(SEC)
    assert buffer.read(10) == b"89abc"


def test_draining_stops_at_first_pending_chunk(clock):
    storage = ByteFifo()
    buffer = DelayBuffer(10 * SEC, storage, clock=clock)
    buffer.write(b"first")
    clock.advance(5 * SEC)
    buffer.write(b"second")
    buffer.write(b"third")

    clock.advance(5 * SEC)
    assert buffer.read() == b"first"
    # "second" was decoded and found too young, "third" stays in storage
    assert buffer.pending_chunks == 1
    assert len(storage) == HEADER.size + len(b"third")


def test_clock_going_backwards_never_releases_early(clock):
    buffer = DelayBuffer(10 * SEC, ByteFifo(), clock=clock)
    start = clock()

    buffer.write(b"a")
    clock.set(start - 50 * SEC)
    buffer.write(b"b")

    clock.set(start + 10 * SEC - 1)
    assert buffer.read() == b""
    clock.set(start + 10 * SEC)
    assert buffer.read() == b"ab"


def test_malformed_storage_raises_and_keeps_decoded_chunks(clock):
    storage = ByteFifo()
    buffer = DelayBuffer(SEC, storage, clock=clock)
    buffer.write(b"ok")
    storage.write(HEADER.pack(clock(), 10) + b"abc")
    clock.advance(SEC)

    errors_before = metrics.registry.get_sample_value("timeshift_decode_errors_total")
    with pytest.raises(MalformedChunkError):
        buffer.read(10)
    errors_after = metrics.registry.get_sample_value("timeshift_decode_errors_total")
    assert errors_after == errors_before + 1

    assert buffer.read(10) == b"ok"
    assert buffer.read(10) == b""


def test_malformed_storage_keeps_released_bytes_readable(clock):
    storage = ByteFifo()
    buffer = DelayBuffer(SEC, storage, clock=clock)
    buffer.write(b"released")
    clock.advance(SEC)
    assert buffer.read(3) == b"rel"

    storage.write(b"\x00\x01")
    with pytest.raises(MalformedChunkError):
        buffer.read(3)
    assert buffer.read() == b"eased"


class FailingStream:
    def write(self, data: bytes) -> int:
        raise OSError("disk full")

    def read(self, size: int) -> bytes:
        return b""


class ShortWriteStream(FailingStream):
    def write(self, data: bytes) -> int:
        return len(data) - 1


def test_write_failure_propagates(clock):
    buffer = DelayBuffer(0, FailingStream(), clock=clock)
    with pytest.raises(OSError, match="disk full"):
        buffer.write(b"abc")
    assert buffer.read() == b""
    assert buffer.pending_chunks == 0


def test_short_write_raises(clock):
    buffer = DelayBuffer(0, ShortWriteStream(), clock=clock)
    with pytest.raises(OSError):
        buffer.write(b"abc")


def test_negative_delay_raises():
    with pytest.raises(ValueError):
        DelayBuffer(-1, ByteFifo())


def test_closed_buffer_raises(clock):
    with DelayBuffer(0, ByteFifo(), clock=clock) as buffer:
        buffer.write(b"abc")
    assert buffer.closed
    with pytest.raises(ValueError):
        buffer.write(b"abc")
    with pytest.raises(ValueError):
        buffer.read()


def test_composes_as_binary_stream(clock):
    buffer = DelayBuffer(SEC, ByteFifo(), clock=clock)
    assert buffer.readable()
    assert buffer.writable()
    assert not buffer.seekable()

    buffer.write(b"hello ")
    buffer.write(b"world")
    clock.advance(SEC)

    output = io.BytesIO()
    shutil.copyfileobj(buffer, output)
    assert output.getvalue() == b"hello world"

    buffer.write(b"buffered")
    clock.advance(SEC)
    reader = io.BufferedReader(buffer)
    assert reader.read(8) == b"buffered"


def test_file_storage(tmp_path, clock):
    with FileStream(tmp_path / "stream.bin") as storage:
        buffer = DelayBuffer(2 * SEC, storage, clock=clock)
        buffer.write(b"ab")
        clock.advance(SEC)
        buffer.write(b"cd")

        assert buffer.read() == b""
        clock.advance(SEC)
        assert buffer.read() == b"ab"
        clock.advance(SEC)
        assert buffer.read() == b"cd"

    assert (tmp_path / "stream.bin").stat().st_size == 2 * (HEADER.size + 2)


def test_metrics_track_bytes(clock):
    def sample(name: str) -> float:
        return metrics.registry.get_sample_value(name) or 0.0

    written_before = sample("timeshift_bytes_written_total")
    read_before = sample("timeshift_bytes_read_total")
    promoted_before = sample("timeshift_chunks_promoted_total")

    buffer = DelayBuffer(SEC, ByteFifo(), clock=clock)
    buffer.write(b"abcd")
    buffer.write(b"ef")
    clock.advance(SEC)
    assert buffer.read(5) == b"abcde"

    assert sample("timeshift_bytes_written_total") == written_before + 6
    assert sample("timeshift_bytes_read_total") == read_before + 5
    assert sample("timeshift_chunks_promoted_total") == promoted_before + 2


def test_concurrent_writer_and_reader():
    buffer = DelayBuffer(0, ByteFifo())
    payloads = [bytes([i % 256]) * (i % 7 + 1) for i in range(500)]
    expected = b"".join(payloads)

    def write_all() -> None:
        for payload in payloads:
            buffer.write(payload)

    writer = threading.Thread(target=write_all)
    writer.start()

    received = b""
    deadline = time.monotonic() + 10
    while len(received) < len(expected) and time.monotonic() < deadline:
        received += buffer.read(64)
    writer.join()

    assert received == expected


def test_file_storage_does_not_replay_previous_buffer(tmp_path):
    file_path = tmp_path / "stream.bin"
    with FileStream(file_path) as storage:
        DelayBuffer(0, storage).write(b"OLD")

    clock = ManualClock(start_us=100)
    with FileStream(file_path) as storage:
        buffer = DelayBuffer(10, storage, clock=clock)
        buffer.write(b"new")
        assert buffer.read() == b""
        clock.advance(10)
        assert buffer.read() == b"new"
