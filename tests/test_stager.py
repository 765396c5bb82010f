import os
from pathlib import Path

import pytest
from PIL import Image

from ordinal_inscriber.executor import CommandResult
from ordinal_inscriber.stager import FileStager, StagingError, optimize_image


class StubDocker:
    def __init__(self, working=("ord",), running=("ord",)):
        self.working = set(working)
        self.running = list(running)
        self.copies = []
        self.execs = []

    def copy_into(self, local_path, container, destination):
        self.copies.append((local_path, container, destination))
        if container in self.working:
            return CommandResult(False, "")
        return CommandResult(True, "Error: No such container: " + container)

    def container_exists(self, name):
        return name in self.running

    def running_containers(self):
        return list(self.running)

    def exec(self, container, *args, timeout=None):
        self.execs.append((container, args))
        return CommandResult(False, "-rw-r--r-- 1 root root 10 cat.txt\n")


def _noisy_png(path: Path, width: int = 1200, height: int = 300) -> Path:
    # noise does not compress losslessly
    Image.frombytes("RGB", (width, height), os.urandom(width * height * 3)).save(path, format="PNG")
    return path


def test_small_images_are_left_alone(tmp_path: Path) -> None:
    source = tmp_path / "tiny.png"
    Image.new("RGB", (4, 4)).save(source, format="PNG")

    result = optimize_image(source)

    assert result.path == source
    assert not result.image_optimized
    assert not (tmp_path / "tiny.webp").exists()


def test_large_png_is_converted_and_resized(tmp_path: Path) -> None:
    source = _noisy_png(tmp_path / "wide.png")

    result = optimize_image(source, threshold_bytes=0)

    assert result.image_optimized
    assert result.path == tmp_path / "wide.webp"
    assert result.final_size < result.original_size
    assert result.final_size == result.path.stat().st_size
    assert source.exists()
    with Image.open(result.path) as optimized:
        assert optimized.width == 1000
        assert optimized.height == 250


def test_larger_webp_is_discarded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    source = _noisy_png(tmp_path / "photo.png", width=200, height=100)
    original = source.read_bytes()

    def bloated_save(self, fp, format=None, **params):
        Path(fp).write_bytes(b"\0" * (len(original) + 1))

    monkeypatch.setattr(Image.Image, "save", bloated_save)

    result = optimize_image(source, threshold_bytes=0)

    assert result.path == source
    assert not result.image_optimized
    assert result.final_size == result.original_size == len(original)
    assert result.message == "Optimization did not reduce file size"
    assert source.read_bytes() == original
    assert not (tmp_path / "photo.webp").exists()


def test_optimizing_a_webp_leaves_it_unchanged(tmp_path: Path) -> None:
    first = optimize_image(_noisy_png(tmp_path / "cat.png"), threshold_bytes=0)
    content = first.path.read_bytes()

    again = optimize_image(first.path, mime_type="image/webp", threshold_bytes=0)

    assert again.path == first.path
    assert not again.image_optimized
    assert again.final_size == again.original_size == len(content)
    assert first.path.read_bytes() == content


def test_non_images_are_not_optimized(tmp_path: Path) -> None:
    source = tmp_path / "notes.txt"
    source.write_text("x" * 100_000)

    result = optimize_image(source, threshold_bytes=0)

    assert result.path == source
    assert not result.image_optimized


def test_encoder_failure_keeps_original(tmp_path: Path) -> None:
    source = tmp_path / "broken.png"
    source.write_bytes(b"not really a png" * 100)

    result = optimize_image(source, threshold_bytes=0)

    assert result.path == source
    assert not result.image_optimized
    assert result.message.startswith("Image optimization failed")
    assert not (tmp_path / "broken.webp").exists()


def test_stage_copies_into_container_and_verifies(tmp_path: Path) -> None:
    source = tmp_path / "cat.txt"
    source.write_text("meow meow!")
    docker = StubDocker()
    stager = FileStager(docker, container_path="/ord/data")

    result = stager.stage(source, "ord", verify=True)

    assert result.ok
    assert result.container_path == "/ord/data/cat.txt"
    assert result.verified is True
    assert "cat.txt" in result.output
    assert docker.copies == [(str(source), "ord", "/ord/data/cat.txt")]
    assert docker.execs == [("ord", ("ls", "-la", "/ord/data/cat.txt"))]
    assert result.as_dict()["finalSize"] == 10


def test_stage_tries_alternatives_once_each(tmp_path: Path) -> None:
    source = tmp_path / "cat.txt"
    source.write_text("meow")
    docker = StubDocker(working=["ord-server"])
    stager = FileStager(docker)

    result = stager.stage(source, "ordinals_ord_1", alternatives=["ord", "ordinals_ord_1", "ord-server"])

    assert result.ok
    assert result.container == "ord-server"
    assert [copy[1] for copy in docker.copies] == ["ordinals_ord_1", "ord", "ord-server"]


def test_stage_failure_lists_available_containers(tmp_path: Path) -> None:
    source = tmp_path / "cat.txt"
    source.write_text("meow")
    docker = StubDocker(working=[], running=["bitcoind"])

    result = FileStager(docker).stage(source, "ord", verify=True)

    assert result.error
    assert "Container 'ord' exists: no" in result.output
    assert "Available containers: bitcoind" in result.output
    assert docker.execs == []


def test_stage_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(StagingError):
        FileStager(StubDocker()).stage(tmp_path / "nope.png", "ord")
