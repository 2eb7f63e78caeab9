import struct

import pytest

from mongostore.blocks import md5_of_text
from mongostore.metadata import MetadataFile
from mongostore.protocol import Response
from mongostore.sabotage import SabotageChecker
from mongostore.store import FileSystem
from mongostore.superblock import Bitmap, Superblock

BLOCK_SIZE = 8
BLOCKS = 16
CONTENT = "O" * 10


@pytest.fixture
def fs(tmp_path):
    filesystem = FileSystem.open(tmp_path / "mnt", BLOCK_SIZE, BLOCKS)
    yield filesystem
    filesystem.close()


@pytest.fixture
def oxygen(fs):
    path = fs.create_resource_file("Oxigeno.ims", "O")
    fs.append(CONTENT, path, True)
    return path


def test_clean_filesystem_reports_fail(fs, oxygen):
    assert SabotageChecker(fs).resolve(1) == Response.FAIL


def test_empty_filesystem_has_no_sabotage(fs):
    checker = SabotageChecker(fs)
    assert checker.check_superblock() is False
    assert checker.check_files() is False


def test_block_total_sabotage_is_repaired(fs):
    with open(fs.superblock_path, "r+b") as handle:
        handle.seek(4)
        handle.write(struct.pack("<I", 99))
    checker = SabotageChecker(fs)
    assert checker.check_block_total() is True
    assert Superblock.load(fs.superblock_path).blocks == BLOCKS
    assert checker.check_block_total() is False


def test_resolve_returns_ok_for_superblock_sabotage(fs):
    with open(fs.superblock_path, "r+b") as handle:
        handle.seek(4)
        handle.write(struct.pack("<I", 3))
    assert SabotageChecker(fs).resolve(7) == Response.OK


def test_missing_bits_are_restored(fs, oxygen):
    checker = SabotageChecker(fs)
    used = checker.used_blocks()
    fs.superblock.write_bitmap(Bitmap.empty(BLOCKS))
    assert checker.check_bitmap() is True
    bitmap = fs.superblock.read_bitmap()
    assert all(bitmap[block] for block in used)
    assert checker.check_bitmap() is False


def test_stray_bits_are_cleared(fs, oxygen):
    checker = SabotageChecker(fs)
    used = set(checker.used_blocks())
    bitmap = fs.superblock.read_bitmap()
    stray = next(i for i in range(len(bitmap)) if i not in used)
    bitmap.set(stray)
    fs.superblock.write_bitmap(bitmap)
    assert checker.check_bitmap() is True
    assert fs.superblock.read_bitmap()[stray] is False


def test_block_count_sabotage_is_repaired(fs, oxygen):
    meta = MetadataFile.load(oxygen)
    real_count = meta.get_int("BLOCK_COUNT")
    meta["BLOCK_COUNT"] = real_count + 5
    meta.save()
    checker = SabotageChecker(fs)
    assert checker.check_resource("Oxigeno.ims") is True
    assert MetadataFile.load(oxygen).get_int("BLOCK_COUNT") == real_count
    assert checker.check_resource("Oxigeno.ims") is False


def test_size_sabotage_is_repaired(fs, oxygen):
    meta = MetadataFile.load(oxygen)
    meta["SIZE"] = 3
    meta.save()
    checker = SabotageChecker(fs)
    assert checker.check_size(MetadataFile.load(oxygen)) is True
    assert MetadataFile.load(oxygen).get_int("SIZE") == len(CONTENT)


def test_corrupted_blocks_are_restored(fs, oxygen):
    meta = MetadataFile.load(oxygen)
    first = int(meta.get_list("BLOCKS")[0])
    fs.store.write(first, 0, b"XX")
    checker = SabotageChecker(fs)
    assert checker.check_blocks(MetadataFile.load(oxygen)) is True
    assert fs.read(oxygen) == CONTENT
    assert MetadataFile.load(oxygen)["MD5_ARCHIVO"] == md5_of_text(CONTENT)


def test_resolve_returns_ok_for_file_sabotage(fs, oxygen):
    meta = MetadataFile.load(oxygen)
    fs.store.write(int(meta.get_list("BLOCKS")[0]), 0, b"Z")
    checker = SabotageChecker(fs)
    assert checker.resolve(2) == Response.OK
    assert checker.resolve(2) == Response.FAIL


def test_used_blocks_cover_resources_and_logs(fs, oxygen):
    fs.create_log_file(1)
    fs.append("hello world\n", fs.log_path(1), False)
    checker = SabotageChecker(fs)
    used = checker.used_blocks()
    resource_blocks = [int(b) for b in MetadataFile.load(oxygen).get_list("BLOCKS")]
    log_blocks = [int(b) for b in MetadataFile.load(fs.log_path(1)).get_list("BLOCKS")]
    assert used == sorted(resource_blocks + log_blocks)
    assert checker.check_bitmap() is False


def test_log_file_names(fs):
    fs.create_log_file(2)
    fs.create_log_file(1)
    assert SabotageChecker(fs).log_file_names() == ["Tripulante1.ims", "Tripulante2.ims"]