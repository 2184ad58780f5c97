# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 NVIDIA Corporation

"""
Time sources for the delay buffer. All timestamps are integer microseconds.
"""

import time
from typing import Callable

Clock = Callable[[], int]


def wall_clock_us() -> int:
    return time.time_ns() // 1000


class ManualClock:
    """
    A clock which only moves when told to. Intended for tests and simulations
    where releases must happen at exact, reproducible times.
    """

    def __init__(self, start_us: int = 0):
        self.now_us = start_us

    def __call__(self) -> int:
        return self.now_us

    def set(self, timestamp_us: int) -> None:
        self.now_us = timestamp_us

    def advance(self, duration_us: int) -> None:
        self.now_us += duration_us
