"""The store's file system: resource files and crew logs laid out over blocks."""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from .blocks import BlockStore, md5_of_text
from .metadata import MetadataFile, format_block_list
from .superblock import Superblock

logger = logging.getLogger(__name__)

SUPERBLOCK_NAME = "SuperBloque.ims"
BLOCKS_NAME = "Blocks.ims"
FILES_DIR = "Files"
LOGS_DIR = "Bitacoras"

_RESOURCE_FILES = {
    "GENERAR_OXIGENO": "Oxigeno.ims",
    "CONSUMIR_OXIGENO": "Oxigeno.ims",
    "GENERAR_COMIDA": "Comida.ims",
    "CONSUMIR_COMIDA": "Comida.ims",
    "GENERAR_BASURA": "Basura.ims",
    "DESCARTAR_BASURA": "Basura.ims",
}

_FILL_CHARS = (("OXIGENO", "O"), ("COMIDA", "C"), ("BASURA", "B"))


def _ceil_div(value: int, divisor: int) -> int:
    quotient, remainder = divmod(value, divisor)
    return quotient + (1 if remainder else 0)


def blocks_of(meta: MetadataFile, block_size: int) -> list[int]:
    """Return the blocks that actually hold the file's SIZE bytes, in order."""
    count = _ceil_div(meta.get_int("SIZE"), block_size)
    if count == 0:
        return []
    return [int(block) for block in meta.get_list("BLOCKS")[:count]]


def last_block(meta: MetadataFile, block_size: int) -> Optional[int]:
    """Return the last block in use, or None for an empty file."""
    if meta.get_int("SIZE") == 0:
        return None
    used = blocks_of(meta, block_size)
    return used[-1] if used else None


def remaining_space(meta: MetadataFile, block_size: int) -> int:
    """Return how many bytes are still free in the file's last block."""
    size = meta.get_int("SIZE")
    if size == 0:
        return block_size
    remainder = size % block_size
    return 0 if remainder == 0 else block_size - remainder


def blocks_to_remove(amount: int, size: int, block_count: int, block_size: int) -> int:
    """Return how many trailing blocks become unused after removing ``amount`` bytes."""
    if not amount:
        return 0
    if amount >= size:
        return block_count
    return block_count - _ceil_div(size - amount, block_size)


def fill_char_for_task(task: str) -> str:
    """Return the fill character of the resource a task works on."""
    for resource, char in _FILL_CHARS:
        if resource in task:
            return char
    raise ValueError(f"task {task!r} names no known resource")


def resource_file_for_task(task: str) -> str:
    """Return the resource file name a task reads or writes."""
    try:
        return _RESOURCE_FILES[task]
    except KeyError:
        raise ValueError(f"unknown resource task {task!r}") from None


class FileSystem:
    """Superblock, blocks file and metadata files under one mount point."""

    def __init__(self, mount_point, block_size: int, blocks: int) -> None:
        self.mount_point = os.fspath(mount_point)
        self.superblock_path = os.path.join(self.mount_point, SUPERBLOCK_NAME)
        self.blocks_path = os.path.join(self.mount_point, BLOCKS_NAME)
        self.files_dir = os.path.join(self.mount_point, FILES_DIR)
        self.logs_dir = os.path.join(self.files_dir, LOGS_DIR)
        if not os.path.exists(self.superblock_path):
            raise FileNotFoundError(self.superblock_path)
        self.block_size = block_size
        self.blocks = blocks
        self.superblock = Superblock(self.superblock_path, block_size, blocks)
        self.store = BlockStore.open(self.blocks_path, block_size, blocks)
        self.lock = threading.RLock()

    @classmethod
    def open(cls, mount_point, block_size: int, blocks: int) -> "FileSystem":
        """Create whatever is missing under ``mount_point`` and open the file system.

        An existing superblock wins over the given geometry.
        """
        mount_point = os.fspath(mount_point)
        os.makedirs(os.path.join(mount_point, FILES_DIR, LOGS_DIR), mode=0o700, exist_ok=True)
        superblock_path = os.path.join(mount_point, SUPERBLOCK_NAME)
        if os.path.exists(superblock_path):
            superblock = Superblock.load(superblock_path)
        else:
            superblock = Superblock.create(superblock_path, block_size, blocks)
        blocks_path = os.path.join(mount_point, BLOCKS_NAME)
        if not os.path.exists(blocks_path):
            logger.info(
                "Creating %d blocks of %d bytes in %s",
                superblock.blocks, superblock.block_size, blocks_path,
            )
            with open(blocks_path, "wb") as handle:
                handle.write(bytes(superblock.block_size * superblock.blocks))
        return cls(mount_point, superblock.block_size, superblock.blocks)

    def files_path(self, name: str) -> str:
        return os.path.join(self.files_dir, name)

    def log_path(self, crew_id: int) -> str:
        return os.path.join(self.logs_dir, f"Tripulante{crew_id}.ims")

    def resource_exists(self, name: str) -> bool:
        return os.path.exists(self.files_path(name))

    def create_resource_file(self, name: str, fill_char: str) -> str:
        """Create an empty resource file and return its path."""
        path = self.files_path(name)
        MetadataFile(path, {
            "SIZE": 0,
            "BLOCK_COUNT": 0,
            "BLOCKS": "[]",
            "CARACTER_LLENADO": fill_char,
            "MD5_ARCHIVO": md5_of_text(None),
        }).save()
        return path

    def create_log_file(self, crew_id: int) -> bool:
        """Create the crew member's log; return False if it already existed."""
        path = self.log_path(crew_id)
        if os.path.exists(path):
            return False
        MetadataFile(path, {"SIZE": 0, "BLOCKS": "[]"}).save()
        return True

    def remove_resource_file(self, name: str) -> bool:
        """Delete a resource file; return False if there was none."""
        try:
            os.remove(self.files_path(name))
        except FileNotFoundError:
            return False
        return True

    def _write_stream(self, data: bytes, last: Optional[int], remaining: int) -> list[int]:
        """Write ``data`` after the file's last block; return newly allocated blocks."""
        new_blocks: list[int] = []
        offset = 0
        total = len(data)
        while offset < total:
            if last is not None and remaining > 0:
                block = last
                block_offset = self.block_size - remaining
                amount = min(total - offset, remaining)
            else:
                block = self.superblock.allocate_block()
                new_blocks.append(block)
                block_offset = 0
                amount = min(total - offset, self.block_size)
            last = None
            chunk = data[offset:offset + amount]
            if block_offset + amount != self.block_size and offset + amount == total:
                chunk += b"\0"
            self.store.write(block, block_offset, chunk)
            offset += amount
        return new_blocks

    def _update_resource(
        self, meta: MetadataFile, fill_char: str, changed: list[int], delta: int
    ) -> None:
        current = blocks_of(meta, self.block_size)
        total = max(meta.get_int("SIZE") + delta, 0)
        if delta < 0:
            removed = set(changed)
            for _ in changed:
                index = next((i for i, b in enumerate(current) if b in removed), None)
                if index is None:
                    break
                del current[index]
        else:
            current.extend(changed)
        meta["SIZE"] = total
        meta["BLOCK_COUNT"] = len(current)
        meta["BLOCKS"] = format_block_list(current)
        meta["MD5_ARCHIVO"] = md5_of_text(fill_char * total)
        meta.save()

    def _update_log(self, meta: MetadataFile, changed: list[int], delta: int) -> None:
        current = blocks_of(meta, self.block_size) + changed
        meta["BLOCKS"] = format_block_list(current)
        meta["SIZE"] = meta.get_int("SIZE") + delta
        meta.save()

    def append(self, text: str, path, is_resource: bool) -> None:
        """Append ``text`` to the file described by the metadata at ``path``."""
        data = text.encode("utf-8")
        with self.lock:
            meta = MetadataFile.load(path)
            last = last_block(meta, self.block_size)
            remaining = remaining_space(meta, self.block_size)
            new_blocks = self._write_stream(data, last, remaining)
            if is_resource:
                self._update_resource(meta, text[:1], new_blocks, len(data))
            else:
                self._update_log(meta, new_blocks, len(data))

    def read(self, path) -> str:
        """Return the content of the file described by the metadata at ``path``."""
        with self.lock:
            meta = MetadataFile.load(path)
            content = self.store.read_chain(blocks_of(meta, self.block_size))
        return content.decode("utf-8", errors="replace")

    def read_resource(self, task: str) -> str:
        return self.read(self.files_path(resource_file_for_task(task)))

    def read_log(self, crew_id: int) -> str:
        return self.read(self.log_path(crew_id))

    def remove_chars(self, fill_char: str, amount: int, path) -> None:
        """Remove ``amount`` fill characters from the end of a resource file."""
        with self.lock:
            meta = MetadataFile.load(path)
            listed = meta.get_list("BLOCKS")
            size = meta.get_int("SIZE")
            count = meta.get_int("BLOCK_COUNT")
            to_remove = blocks_to_remove(amount, size, count, self.block_size)
            removed = [int(listed[count - i - 1]) for i in range(to_remove)]
            for block in removed:
                self.superblock.release_block(block)
            if to_remove == count and size <= amount:
                logger.warning("More characters removed than %s holds", path)
            else:
                end = (size - amount) % self.block_size
                if size > amount and end:
                    self.store.write(int(listed[count - to_remove - 1]), end, b"\0")
            self._update_resource(meta, fill_char, removed, -amount)
        logger.info("Removed %d fill characters %s", amount, fill_char)

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "FileSystem":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()