"""The blocks file: a memory map plus a working copy that is synced periodically."""

from __future__ import annotations

import hashlib
import logging
import mmap
import os
import threading
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


def md5_of_text(text: Optional[str]) -> str:
    """Return the hex MD5 digest of ``text``; ``None`` hashes like the empty string."""
    return hashlib.md5((text or "").encode("utf-8")).hexdigest()


class BlockStore:
    """Fixed-size blocks backed by a mapped file.

    Reads and writes go to an in-memory working copy; :meth:`sync` copies it
    into the mapping and flushes it to disk.
    """

    def __init__(self, path, block_size: int, blocks: int) -> None:
        self.path = os.fspath(path)
        self.block_size = block_size
        self.blocks = blocks
        self._file = open(self.path, "r+b")
        size = os.fstat(self._file.fileno()).st_size
        try:
            self._map = mmap.mmap(self._file.fileno(), size)
        except (ValueError, OSError):
            self._file.close()
            logger.error("Error mapping %s of size %d", self.path, size)
            raise
        self._data = bytearray(self._map[:])
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def create(cls, path, block_size: int, blocks: int) -> "BlockStore":
        """Create the blocks file filled with zeros and open it."""
        logger.info("Creating %d blocks of %d bytes in %s", blocks, block_size, path)
        mode = "r+b" if os.path.exists(path) else "w+b"
        with open(path, mode) as handle:
            handle.write(bytes(block_size * blocks))
        return cls(path, block_size, blocks)

    @classmethod
    def open(cls, path, block_size: int, blocks: int) -> "BlockStore":
        """Open an existing blocks file."""
        if not os.path.exists(path):
            raise FileNotFoundError(path)
        logger.info("Opening %d blocks of %d bytes in %s", blocks, block_size, path)
        return cls(path, block_size, blocks)

    @property
    def size(self) -> int:
        return len(self._data)

    def _block_start(self, block: int) -> int:
        start = block * self.block_size
        if block < 0 or start + self.block_size > len(self._data):
            raise IndexError(f"block {block} out of range")
        return start

    def write(self, block: int, offset: int, data: bytes) -> None:
        """Write ``data`` into the working copy at ``offset`` within ``block``."""
        start = self._block_start(block) + offset
        end = start + len(data)
        if offset < 0 or end > len(self._data):
            raise ValueError(f"write of {len(data)} bytes at block {block}+{offset} overflows")
        with self._lock:
            self._data[start:end] = data

    def read_block(self, block: int) -> bytes:
        start = self._block_start(block)
        with self._lock:
            return bytes(self._data[start:start + self.block_size])

    def read_chain(self, blocks: Iterable[int]) -> bytes:
        """Concatenate the blocks' contents up to the first NUL byte."""
        chunks = []
        for block in blocks:
            content = self.read_block(block).split(b"\0", 1)[0]
            chunks.append(content)
            if len(content) < self.block_size:
                break
        return b"".join(chunks)

    def sync(self) -> None:
        """Copy the working copy into the mapping and flush it to disk."""
        with self._lock:
            self._map[:] = bytes(self._data)
        try:
            self._map.flush()
        except OSError:
            logger.error("Error synchronising blocks")
            raise
        logger.info("Blocks synchronised")

    def start_sync(self, interval: float) -> threading.Thread:
        """Sync every ``interval`` seconds in a background thread until closed."""

        def run() -> None:
            while not self._stop.wait(interval):
                try:
                    self.sync()
                except (OSError, ValueError):
                    logger.exception("Periodic sync failed")

        self._thread = threading.Thread(target=run, name="blocks-sync", daemon=True)
        self._thread.start()
        return self._thread

    def close(self) -> None:
        """Stop syncing, flush once more and release the file."""
        if self._map.closed:
            return
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self.sync()
        self._map.close()
        self._file.close()

    def __enter__(self) -> "BlockStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()