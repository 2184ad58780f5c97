# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 NVIDIA Corporation

"""
Underlying streams a DelayBuffer can store its encoded chunks in.

For long delays or high data rates, use `FileStream`: only the chunks which are
close to release are held in memory, the rest stays on disk.
"""

from __future__ import annotations

import logging
import os
from typing import BinaryIO, Optional, Self, Union

from timeshift.config import StorageConfig
from timeshift.fifo import BytesLike, ByteFifo

logger = logging.getLogger(__name__)


class FileStream:
    """
    File with an independent read cursor, truncated on open: the stored chunks
    belong to one buffer and are meaningless to the next.

    Writes always go to the end of the file and are flushed right away; reads
    continue from where the previous read stopped, so data written after the
    reader hit the end of the file is picked up by the next read.
    """

    def __init__(self, file_path: Union[str, os.PathLike]) -> None:
        self.file_path = os.fspath(file_path)
        if not self.file_path:
            raise ValueError("Storage file path must be non-empty.")

        file_dir = os.path.dirname(self.file_path)
        if file_dir:
            os.makedirs(file_dir, exist_ok=True)

        self._writer: Optional[BinaryIO] = open(self.file_path, "wb")
        self._reader: Optional[BinaryIO] = open(self.file_path, "rb")
        logger.debug("Opened storage file %s", self.file_path)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args, **kwargs) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._writer is None

    def write(self, data: BytesLike) -> int:
        if self._writer is None:
            raise ValueError("I/O operation on closed FileStream.")
        written = self._writer.write(data)
        self._writer.flush()
        return written

    def read(self, size: int = -1) -> bytes:
        if self._reader is None:
            raise ValueError("I/O operation on closed FileStream.")
        return self._reader.read(size)

    def close(self) -> None:
        if self._writer is None:
            return
        self._writer.close()
        self._reader.close()
        self._writer = None
        self._reader = None


Storage = Union[ByteFifo, FileStream]


def open_storage(config: StorageConfig) -> Storage:
    if config.kind == "memory":
        return ByteFifo()
    if config.kind == "file":
        if not config.path:
            raise ValueError("`storage.path` must be set for file storage.")
        return FileStream(config.path)
    raise ValueError(f"Unknown storage kind {config.kind!r}, expected 'memory' or 'file'.")
