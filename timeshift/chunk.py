# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 NVIDIA Corporation

"""
Implements the record format the delay buffer stores in its underlying stream.

Each write becomes one length-delimited record:

    >q  timestamp in microseconds
    >L  payload size in bytes
        payload

The header has a fixed size, so a reader always knows how many bytes to wait
for and never needs to look ahead past the current record.
"""

import logging
import os
import struct
from dataclasses import dataclass
from typing import AsyncGenerator, Optional, Protocol

import aiofiles

logger = logging.getLogger(__name__)

HEADER = struct.Struct(">qL")
MAX_PAYLOAD_SIZE = 2**32 - 1


@dataclass(frozen=True)
class Chunk:
    timestamp_us: int
    payload: bytes


class MalformedChunkError(IOError):
    def __init__(self, expected: int, found: int):
        super().__init__(
            f"Malformed chunk (expected {expected} bytes, found {found})"
        )
        self.expected = expected
        self.found = found


class Sink(Protocol):
    def write(self, data: bytes, /) -> Optional[int]: ...


class Source(Protocol):
    def read(self, size: int, /) -> Optional[bytes]: ...


def encode_chunk(chunk: Chunk) -> bytes:
    if len(chunk.payload) > MAX_PAYLOAD_SIZE:
        raise ValueError(
            f"Chunk payload of {len(chunk.payload)} bytes exceeds {MAX_PAYLOAD_SIZE}."
        )
    return HEADER.pack(chunk.timestamp_us, len(chunk.payload)) + chunk.payload


def write_chunk(sink: Sink, chunk: Chunk) -> None:
    # a single write call, so the sink either takes the record or raises
    record = encode_chunk(chunk)
    written = sink.write(record)
    if written is not None and written != len(record):
        raise OSError(f"Short write ({written} of {len(record)} bytes)")


def _read_exact(source: Source, size: int) -> bytes:
    """
    Reads until `size` bytes were collected or the source has nothing more to
    give (EOF, or `None` from a non-blocking stream). May return fewer bytes.
    """
    data = b""
    while len(data) < size:
        part = source.read(size - len(data))
        if not part:
            break
        data += part
    return data


def read_chunk(source: Source) -> Optional[Chunk]:
    """
    Decode the next chunk from `source`.

    :return: The decoded chunk, or None if the source had no data at all.
    :raises MalformedChunkError: if the source ended in the middle of a record.
    """
    header = _read_exact(source, HEADER.size)
    if not header:
        return None
    if len(header) != HEADER.size:
        raise MalformedChunkError(HEADER.size, len(header))

    timestamp_us, payload_size = HEADER.unpack(header)
    payload = _read_exact(source, payload_size)
    if len(payload) != payload_size:
        raise MalformedChunkError(payload_size, len(payload))
    return Chunk(timestamp_us=timestamp_us, payload=payload)


async def async_read_chunk_stream(
    fname: str | os.PathLike, raise_on_malformed: bool = False
) -> AsyncGenerator[Chunk, None]:
    async with aiofiles.open(fname, "rb") as file:
        while (header := await file.read(HEADER.size)) != b"":  # detect EOF
            if len(header) != HEADER.size:
                error = MalformedChunkError(HEADER.size, len(header))
            else:
                timestamp_us, payload_size = HEADER.unpack(header)
                payload = await file.read(payload_size)
                if len(payload) == payload_size:
                    yield Chunk(timestamp_us=timestamp_us, payload=payload)
                    continue
                error = MalformedChunkError(payload_size, len(payload))

            if raise_on_malformed:
                raise error
            logger.warning(str(error))
            break
