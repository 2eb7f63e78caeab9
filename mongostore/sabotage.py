"""Detection and repair of sabotages against the store's file system."""

from __future__ import annotations

import logging
import os
import struct

from .blocks import md5_of_text
from .metadata import MetadataFile
from .protocol import Response
from .store import FileSystem, blocks_of

logger = logging.getLogger(__name__)

_UINT32 = struct.Struct("<I")
_HEADER = struct.Struct("<II")

RESOURCE_FILES = ("Oxigeno.ims", "Comida.ims", "Basura.ims")


class SabotageChecker:
    """Checks the superblock and resource files and repairs what was tampered with."""

    def __init__(self, fs: FileSystem) -> None:
        self.fs = fs

    def resolve(self, crew_id: int) -> Response:
        """Look for one sabotage and fix it; FAIL means nothing was found."""
        if self.check_superblock():
            logger.info("Crew member %d fixed a sabotage in the superblock", crew_id)
            return Response.OK
        if self.check_files():
            logger.info("Crew member %d fixed a sabotage in the files", crew_id)
            return Response.OK
        logger.warning("Crew member %d found no sabotage", crew_id)
        return Response.FAIL

    def check_superblock(self) -> bool:
        return self.check_block_total() or self.check_bitmap()

    def check_block_total(self) -> bool:
        """Make the superblock's block count match the real size of the blocks file."""
        with open(self.fs.superblock_path, "r+b") as handle:
            header = handle.read(_HEADER.size)
            if len(header) < _HEADER.size:
                raise ValueError(f"superblock {self.fs.superblock_path} is truncated")
            block_size, claimed = _HEADER.unpack(header)
            real = os.path.getsize(self.fs.blocks_path) // block_size
            if real == claimed:
                return False
            handle.seek(_UINT32.size)
            handle.write(_UINT32.pack(real))
        logger.info("FSCK: superblock block count set to %d", real)
        return True

    def check_bitmap(self) -> bool:
        """Rebuild the bitmap if it disagrees with the blocks the files use."""
        used = self.used_blocks()
        superblock = self.fs.superblock
        with superblock.lock:
            bitmap = superblock.read_bitmap()
            in_range = {block for block in used if 0 <= block < len(bitmap)}
            missing = any(not bitmap[block] for block in in_range)
            stray = any(bitmap[i] and i not in in_range for i in range(len(bitmap)))
            if not (missing or stray):
                logger.info("FSCK: no sabotage in the superblock bitmap")
                return False
            for index in range(len(bitmap)):
                bitmap.clear(index)
            for block in in_range:
                bitmap.set(block)
            superblock.write_bitmap(bitmap)
        logger.info("FSCK: bitmap sabotage fixed")
        return True

    def check_files(self) -> bool:
        return any(
            self.fs.resource_exists(name) and self.check_resource(name)
            for name in RESOURCE_FILES
        )

    def check_resource(self, name: str) -> bool:
        """Check one resource file's BLOCKS, BLOCK_COUNT and SIZE, in that order."""
        meta = MetadataFile.load(self.fs.files_path(name))
        if self.check_blocks(meta):
            logger.info("FSCK: sabotage found in BLOCKS of %s", name)
            return True
        if self.check_block_count(meta):
            logger.info("FSCK: sabotage found in BLOCK_COUNT of %s", name)
            return True
        if self.check_size(meta):
            logger.info("FSCK: sabotage found in SIZE of %s", name)
            return True
        logger.info("FSCK: no sabotage found in %s", name)
        return False

    def check_size(self, meta: MetadataFile) -> bool:
        """Trust the characters found in the blocks and fix SIZE to match them."""
        listed = [int(block) for block in meta.get_list("BLOCKS")]
        real = len(self.fs.store.read_chain(listed))
        if meta.get_int("SIZE") == real:
            return False
        meta["SIZE"] = real
        meta.save()
        return True

    def check_block_count(self, meta: MetadataFile) -> bool:
        """Fix BLOCK_COUNT to the number of blocks the file really uses."""
        real = len(blocks_of(meta, self.fs.block_size))
        if meta.get_int("BLOCK_COUNT") == real:
            return False
        meta["BLOCK_COUNT"] = real
        meta.save()
        return True

    def check_blocks(self, meta: MetadataFile) -> bool:
        """Compare the stored MD5 with the blocks' content and restore on mismatch."""
        stored = meta["MD5_ARCHIVO"].strip()
        computed = md5_of_text(self.fs.read(meta.path))
        if stored == computed:
            return False
        logger.info("Stored MD5: %s -- recomputed MD5: %s", stored, computed)
        self.restore_blocks(meta)
        return True

    def restore_blocks(self, meta: MetadataFile) -> None:
        """Refill the file's blocks with its fill character up to SIZE."""
        logger.info("Restoring the blocks of %s", meta.path)
        block_size = self.fs.block_size
        with self.fs.lock:
            fill = meta["CARACTER_LLENADO"].strip()[:1]
            size = meta.get_int("SIZE")
            stream = (fill * size).encode("utf-8")
            offset = 0
            for block in blocks_of(meta, block_size):
                if offset >= len(stream):
                    break
                amount = min(len(stream) - offset, block_size)
                chunk = stream[offset:offset + amount]
                if amount != block_size and offset + amount == len(stream):
                    chunk += b"\0"
                self.fs.store.write(block, 0, chunk)
                offset += amount
            meta["MD5_ARCHIVO"] = md5_of_text(fill * size)
            meta.save()

    def used_blocks(self) -> list[int]:
        """Return every block used by resource files and crew logs, sorted."""
        used: list[int] = []
        for name in RESOURCE_FILES:
            if self.fs.resource_exists(name):
                meta = MetadataFile.load(self.fs.files_path(name))
                used.extend(blocks_of(meta, self.fs.block_size))
        for name in self.log_file_names():
            meta = MetadataFile.load(os.path.join(self.fs.logs_dir, name))
            used.extend(blocks_of(meta, self.fs.block_size))
        return sorted(used)

    def log_file_names(self) -> list[str]:
        """Return the names of the crew log files, sorted."""
        try:
            entries = os.listdir(self.fs.logs_dir)
        except FileNotFoundError:
            return []
        return sorted(entries)