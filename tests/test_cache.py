import os
from pathlib import Path

import pytest

from ordinal_inscriber.cache import CacheError, CacheManager, format_byte_size


def _write(directory: Path, name: str, size: int, age: int) -> Path:
    path = directory / name
    path.write_bytes(b"x" * size)
    stamp = 1_700_000_000 + age
    os.utime(path, (stamp, stamp))
    return path


def test_format_byte_size() -> None:
    assert format_byte_size(512) == "512 bytes"
    assert format_byte_size(2048) == "2.00 KB"
    assert format_byte_size(5 * 1024 ** 2) == "5.00 MB"
    assert format_byte_size(5 * 1024 ** 3) == "5.00 GB"


def test_info_ignores_untracked_files(tmp_path: Path) -> None:
    _write(tmp_path, "cat.png", 100, 1)
    _write(tmp_path, "notes.md", 50, 2)
    _write(tmp_path, "socket.lock", 1000, 3)

    info = CacheManager(tmp_path, limit_bytes=300).info()

    assert info.file_count == 2
    assert info.total_size == 150
    assert info.percent_used == 50.0
    payload = info.as_dict()
    assert [item["name"] for item in payload["files"]] == ["cat.png", "notes.md"]
    assert payload["formattedMaxSize"] == "300 bytes"


def test_sweep_deletes_oldest_until_under_limit(tmp_path: Path) -> None:
    _write(tmp_path, "newest.png", 100, 30)
    _write(tmp_path, "oldest.png", 100, 10)
    _write(tmp_path, "middle.json", 100, 20)
    keep = _write(tmp_path, "keep.bin", 10_000, 0)

    manager = CacheManager(tmp_path, limit_bytes=150)
    removed = manager.sweep()

    assert removed == ["oldest.png", "middle.json"]
    assert (tmp_path / "newest.png").exists()
    assert keep.exists()
    assert manager.info().total_size <= manager.limit_bytes


def test_sweep_empties_cache_when_one_file_exceeds_limit(tmp_path: Path) -> None:
    _write(tmp_path, "small.txt", 10, 1)
    _write(tmp_path, "huge.png", 500, 2)

    manager = CacheManager(tmp_path, limit_bytes=100)

    assert manager.sweep() == ["small.txt", "huge.png"]
    assert manager.info().file_count == 0


def test_sweep_never_deletes_kept_files(tmp_path: Path) -> None:
    _write(tmp_path, "old.png", 50, 1)
    _write(tmp_path, "older.txt", 50, 0)
    upload = _write(tmp_path, "upload.png", 500, 2)

    manager = CacheManager(tmp_path, limit_bytes=100)
    removed = manager.sweep(keep={"upload.png"})

    assert removed == ["older.txt", "old.png"]
    assert upload.exists()
    assert [item.name for item in manager.info().files] == ["upload.png"]


def test_sweep_is_a_no_op_under_limit(tmp_path: Path) -> None:
    _write(tmp_path, "cat.png", 100, 1)

    assert CacheManager(tmp_path, limit_bytes=100).sweep() == []


def test_clear_all_counts_deleted_files(tmp_path: Path) -> None:
    _write(tmp_path, "a.png", 1, 1)
    _write(tmp_path, "b.txt", 1, 2)
    _write(tmp_path, "c.bin", 1, 3)

    assert CacheManager(tmp_path).clear_all() == 2
    assert (tmp_path / "c.bin").exists()


def test_missing_directory_is_empty(tmp_path: Path) -> None:
    info = CacheManager(tmp_path / "gone").info()

    assert info.file_count == 0


def test_percent_used_is_capped() -> None:
    from ordinal_inscriber.cache import CacheInfo

    assert CacheInfo(total_size=500, file_count=1, limit_bytes=100).percent_used == 100.0


def test_delete_rejects_path_escapes(tmp_path: Path) -> None:
    manager = CacheManager(tmp_path)
    _write(tmp_path, "cat.png", 1, 1)

    with pytest.raises(CacheError):
        manager.delete("../cat.png")
    with pytest.raises(CacheError):
        manager.delete("script.sh")
    with pytest.raises(FileNotFoundError):
        manager.delete("dog.png")

    manager.delete("cat.png")
    assert not (tmp_path / "cat.png").exists()
