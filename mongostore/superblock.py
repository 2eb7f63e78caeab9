"""The superblock: block size, block count and the block allocation bitmap."""

from __future__ import annotations

import errno
import logging
import os
import struct
import threading

logger = logging.getLogger(__name__)

_HEADER = struct.Struct("<II")


class Bitmap:
    """A bit per block, least significant bit first within each byte."""

    def __init__(self, data: bytes) -> None:
        self._data = bytearray(data)

    @classmethod
    def empty(cls, blocks: int) -> "Bitmap":
        return cls(bytes(blocks // 8))

    def _locate(self, index: int) -> tuple[int, int]:
        if not 0 <= index < len(self):
            raise IndexError(f"bit {index} out of range")
        return index // 8, 1 << (index % 8)

    def __getitem__(self, index: int) -> bool:
        byte, mask = self._locate(index)
        return bool(self._data[byte] & mask)

    def set(self, index: int) -> None:
        byte, mask = self._locate(index)
        self._data[byte] |= mask

    def clear(self, index: int) -> None:
        byte, mask = self._locate(index)
        self._data[byte] &= ~mask & 0xFF

    def __len__(self) -> int:
        return len(self._data) * 8

    def to_bytes(self) -> bytes:
        return bytes(self._data)


class Superblock:
    """The on-disk superblock file with a lock guarding its bitmap."""

    def __init__(self, path, block_size: int, blocks: int) -> None:
        self.path = os.fspath(path)
        self.block_size = block_size
        self.blocks = blocks
        self.lock = threading.RLock()

    @classmethod
    def create(cls, path, block_size: int, blocks: int) -> "Superblock":
        """Write a fresh superblock with every block free."""
        with open(path, "wb") as handle:
            handle.write(_HEADER.pack(block_size, blocks))
            handle.write(Bitmap.empty(blocks).to_bytes())
        return cls(path, block_size, blocks)

    @classmethod
    def load(cls, path) -> "Superblock":
        """Read block size and count from an existing superblock file."""
        with open(path, "rb") as handle:
            header = handle.read(_HEADER.size)
        if len(header) < _HEADER.size:
            raise ValueError(f"superblock {path} is truncated")
        block_size, blocks = _HEADER.unpack(header)
        logger.info("Superblock read: %d blocks of %d bytes", blocks, block_size)
        return cls(path, block_size, blocks)

    def read_bitmap(self) -> Bitmap:
        with open(self.path, "rb") as handle:
            handle.seek(_HEADER.size)
            return Bitmap(handle.read(self.blocks // 8))

    def write_bitmap(self, bitmap: Bitmap) -> None:
        with open(self.path, "r+b") as handle:
            handle.seek(_HEADER.size)
            handle.write(bitmap.to_bytes())

    def allocate_block(self) -> int:
        """Mark the first free block as used and return its number."""
        with self.lock:
            bitmap = self.read_bitmap()
            for index in range(min(self.blocks, len(bitmap))):
                if not bitmap[index]:
                    bitmap.set(index)
                    self.write_bitmap(bitmap)
                    logger.info("Block %d allocated", index)
                    return index
        logger.info("No free blocks")
        raise OSError(errno.ENOSPC, "no free blocks left")

    def release_block(self, block: int) -> None:
        with self.lock:
            bitmap = self.read_bitmap()
            bitmap.clear(block)
            self.write_bitmap(bitmap)
            logger.info("Block %d released", block)