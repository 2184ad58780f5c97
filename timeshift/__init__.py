# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 NVIDIA Corporation

__version__ = (0, 1, 0)

import logging

from timeshift.chunk import Chunk, MalformedChunkError
from timeshift.clock import ManualClock, wall_clock_us
from timeshift.delay_buffer import DelayBuffer
from timeshift.fifo import ByteFifo
from timeshift.storage import FileStream, open_storage

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s.%(msecs)03d %(levelname)s:\t%(message)s",
    datefmt="%H:%M:%S",
)

__all__ = (
    "__version__",
    "ByteFifo",
    "Chunk",
    "DelayBuffer",
    "FileStream",
    "MalformedChunkError",
    "ManualClock",
    "open_storage",
    "wall_clock_us",
)
