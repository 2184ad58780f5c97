# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 NVIDIA Corporation

"""
Time shifts a live byte stream: everything read from the input is written to the
output once the configured delay has passed, e.g.

    some_producer | python -m timeshift --delay 30 | some_player
"""

import argparse
import asyncio
import logging
import sys
from typing import Any

import aiofiles
from timeshift.config import TimeshiftConfig, typed_parse_config, validate_config
from timeshift.delay_buffer import DelayBuffer
from timeshift.metrics import dump_prometheus_metrics
from timeshift.storage import FileStream, open_storage

logger = logging.getLogger("timeshift")

STDIO = "-"


def _open_async(path: str, mode: str) -> Any:
    if path == STDIO:
        stdio = sys.stdin if "r" in mode else sys.stdout
        return aiofiles.open(stdio.fileno(), mode, closefd=False)
    return aiofiles.open(path, mode)


async def run_timeshift(cfg: TimeshiftConfig, input_path: str, output_path: str) -> int:
    """
    Copies `input_path` to `output_path` through a DelayBuffer.

    :return: The number of bytes copied.
    """
    storage = open_storage(cfg.storage)
    buffer = DelayBuffer(cfg.delay_us, storage)
    input_done = asyncio.Event()
    bytes_in = 0
    bytes_out = 0

    # buffer calls run in threads since file storage blocks on disk I/O
    async def produce() -> None:
        nonlocal bytes_in
        async with _open_async(input_path, "rb") as input_file:
            while data := await input_file.read1(cfg.read_size):
                bytes_in += await asyncio.to_thread(buffer.write, data)
        logger.info("Input ended after %d bytes", bytes_in)
        input_done.set()

    async def consume() -> None:
        nonlocal bytes_out
        async with _open_async(output_path, "wb") as output_file:
            while not (input_done.is_set() and bytes_out >= bytes_in):
                data = await asyncio.to_thread(buffer.read, cfg.read_size)
                if data:
                    await output_file.write(data)
                    await output_file.flush()
                    bytes_out += len(data)
                else:
                    await asyncio.sleep(cfg.poll_interval_s)

    logger.info(
        "Time shifting %s -> %s by %.3fs",
        input_path,
        output_path,
        cfg.delay_us / 1e6,
    )
    try:
        await asyncio.gather(produce(), consume())
    finally:
        buffer.close()
        if isinstance(storage, FileStream):
            storage.close()
        if cfg.metrics_file:
            dump_prometheus_metrics(cfg.metrics_file)

    return bytes_out


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m timeshift",
        description="Delay a byte stream by a fixed amount of time.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Yaml file with the TimeshiftConfig to use",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Delay in seconds, overrides `delay_us` from the config",
    )
    parser.add_argument(
        "--input",
        type=str,
        default=STDIO,
        help="File to read the live stream from (default: stdin)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=STDIO,
        help="File to write the delayed stream to (default: stdout)",
    )
    parser.add_argument(
        "--storage-path",
        type=str,
        default=None,
        help="Keep the delayed data in this file instead of in memory",
    )
    parser.add_argument(
        "--metrics-file",
        type=str,
        default=None,
        help="Write prometheus metrics to this file on exit",
    )
    args = parser.parse_args(argv)
    if args.config is None and args.delay is None:
        parser.error("one of --config or --delay is required")
    return args


def load_config(args: argparse.Namespace) -> TimeshiftConfig:
    overrides: dict[str, Any] = {}
    if args.delay is not None:
        overrides["delay_us"] = round(args.delay * 1e6)
    if args.storage_path is not None:
        overrides["storage"] = {"kind": "file", "path": args.storage_path}
    if args.metrics_file is not None:
        overrides["metrics_file"] = args.metrics_file

    cfg = typed_parse_config(args.config, TimeshiftConfig, overrides)
    validate_config(cfg)
    return cfg


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    cfg = load_config(args)
    asyncio.run(run_timeshift(cfg, args.input, args.output))


if __name__ == "__main__":
    main()
