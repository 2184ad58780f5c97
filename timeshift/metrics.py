# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 NVIDIA Corporation

from prometheus_client import CollectorRegistry, Counter, Gauge, write_to_textfile

# All metrics are top-level singletons shared by every DelayBuffer in the process

registry = CollectorRegistry()

CHUNKS_WRITTEN = Counter(
    "timeshift_chunks_written",
    "Chunks encoded into the underlying stream",
    registry=registry,
)

BYTES_WRITTEN = Counter(
    "timeshift_bytes_written",
    "Payload bytes accepted by DelayBuffer.write",
    registry=registry,
)

CHUNKS_PROMOTED = Counter(
    "timeshift_chunks_promoted",
    "Chunks which left their delay window and moved to the head buffer",
    registry=registry,
)

BYTES_READ = Counter(
    "timeshift_bytes_read",
    "Payload bytes delivered to readers",
    registry=registry,
)

DECODE_ERRORS = Counter(
    "timeshift_decode_errors",
    "Failures decoding chunks from the underlying stream",
    registry=registry,
)

PENDING_CHUNKS = Gauge(
    "timeshift_pending_chunks",
    "Decoded chunks still inside their delay window",
    registry=registry,
)

HEAD_BYTES = Gauge(
    "timeshift_head_bytes",
    "Released bytes not yet delivered to a reader",
    registry=registry,
)


def dump_prometheus_metrics(to_file: str) -> None:
    write_to_textfile(to_file, registry)
