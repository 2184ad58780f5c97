# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 NVIDIA Corporation

import argparse
import asyncio
from datetime import datetime, timezone
from typing import Optional

from timeshift.chunk import async_read_chunk_stream


def format_timestamp(timestamp_us: int) -> str:
    return datetime.fromtimestamp(timestamp_us / 1e6, tz=timezone.utc).isoformat()


async def print_chunks(
    file_path: str,
    start: int,
    end: Optional[int],
    show_payload: bool,
) -> None:
    chunk_i = 0
    async for chunk in async_read_chunk_stream(file_path):
        if chunk_i == end:
            break

        if chunk_i >= start:
            print(
                f"{chunk_i}\t{format_timestamp(chunk.timestamp_us)}\t"
                f"{len(chunk.payload)} bytes"
            )
            if show_payload:
                print(chunk.payload)

        chunk_i += 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "chunk_file",
        type=str,
        help="Path of the storage file written by a file backed DelayBuffer",
    )
    parser.add_argument(
        "--start",
        type=int,
        default=0,
        help="Index of the first chunk to print (default: 0)",
    )
    parser.add_argument(
        "--end",
        type=int,
        default=None,
        help="Index one past the last chunk to print (default: print all)",
    )
    parser.add_argument(
        "--payload",
        action="store_true",
        help="Also print the payload of each chunk",
    )
    args = parser.parse_args()

    asyncio.run(
        print_chunks(
            file_path=args.chunk_file,
            start=args.start,
            end=args.end,
            show_payload=args.payload,
        )
    )
