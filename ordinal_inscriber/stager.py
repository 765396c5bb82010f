"""Stage uploaded files inside the ord container.

Staging is a strictly sequential pipeline: optionally shrink large raster
images to WebP, ``docker cp`` the result into the container (trying a few
alternative container names once each), then optionally list the
destination to confirm the copy landed. A successful copy is never rolled
back if a later step fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

from PIL import Image

from .config import DEFAULT_CONTAINER_PATH, DEFAULT_OPTIMIZE_THRESHOLD_BYTES, container_file_path
from .executor import CommandResult, DockerCLI

logger = logging.getLogger(__name__)

OPTIMIZABLE_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png"}
OPTIMIZABLE_EXTENSIONS = {".jpg", ".jpeg", ".png"}
WEBP_MAX_WIDTH = 1000
WEBP_QUALITY = 80
WEBP_METHOD = 6


class StagingError(RuntimeError):
    """Raised when a file cannot be staged at all (e.g. it does not exist)."""


@dataclass
class OptimizationResult:
    path: Path
    image_optimized: bool
    original_size: int
    final_size: int
    message: str | None = None


@dataclass
class StagingResult:
    """Outcome of staging one file; ``error`` mirrors the shell-out convention."""

    error: bool
    output: str
    file_name: str
    local_path: str
    container: str | None = None
    container_path: str | None = None
    image_optimized: bool = False
    original_size: int = 0
    final_size: int = 0
    verified: bool | None = None

    @property
    def ok(self) -> bool:
        return not self.error

    def as_dict(self) -> dict:
        return {
            "error": self.error,
            "output": self.output,
            "fileName": self.file_name,
            "containerName": self.container,
            "containerPath": self.container_path,
            "imageOptimized": self.image_optimized,
            "originalSize": self.original_size,
            "finalSize": self.final_size,
            "verified": self.verified,
        }


def is_optimizable(path: Path, mime_type: str | None = None) -> bool:
    if mime_type:
        return mime_type.lower() in OPTIMIZABLE_MIME_TYPES
    return path.suffix.lower() in OPTIMIZABLE_EXTENSIONS


def optimize_image(
    path: str | Path,
    *,
    mime_type: str | None = None,
    threshold_bytes: int = DEFAULT_OPTIMIZE_THRESHOLD_BYTES,
    max_width: int = WEBP_MAX_WIDTH,
    quality: int = WEBP_QUALITY,
) -> OptimizationResult:
    """Re-encode a large JPEG/PNG as WebP, keeping it only when it is smaller.

    The original file is left untouched in every case. Encoder failures are
    logged and reported through ``message`` but are not treated as errors.
    """

    source = Path(path)
    original_size = source.stat().st_size
    if not is_optimizable(source, mime_type) or original_size <= threshold_bytes:
        return OptimizationResult(source, False, original_size, original_size)

    target = source.with_suffix(".webp")
    try:
        with Image.open(source) as image:
            image.load()
            if image.width > max_width:
                height = max(1, round(image.height * max_width / image.width))
                image = image.resize((max_width, height), Image.Resampling.LANCZOS)
            if image.mode not in ("RGB", "RGBA"):
                image = image.convert("RGBA" if image.mode in ("P", "LA", "PA") else "RGB")
            image.save(target, format="WEBP", quality=quality, method=WEBP_METHOD)
    except (OSError, ValueError) as exc:
        logger.error("Error optimizing image %s: %s", source.name, exc)
        target.unlink(missing_ok=True)
        return OptimizationResult(
            source, False, original_size, original_size, message=f"Image optimization failed: {exc}"
        )

    optimized_size = target.stat().st_size
    if optimized_size < original_size:
        logger.info(
            "Optimized %s from %d to %d bytes", source.name, original_size, optimized_size
        )
        return OptimizationResult(target, True, original_size, optimized_size)

    target.unlink(missing_ok=True)
    logger.info("Optimization did not reduce file size for %s, using original", source.name)
    return OptimizationResult(
        source, False, original_size, original_size, message="Optimization did not reduce file size"
    )


class FileStager:
    """Copy files into the ord container's data directory."""

    def __init__(
        self,
        docker: DockerCLI,
        *,
        container_path: str = DEFAULT_CONTAINER_PATH,
        optimize_threshold_bytes: int = DEFAULT_OPTIMIZE_THRESHOLD_BYTES,
    ) -> None:
        self.docker = docker
        self.container_path = container_path
        self.optimize_threshold_bytes = optimize_threshold_bytes

    def container_file_path(self, file_name: str) -> str:
        return container_file_path(self.container_path, file_name)

    def copy_to_container(
        self,
        local_path: str | Path,
        container: str,
        *,
        alternatives: Iterable[str] = (),
    ) -> StagingResult:
        local = Path(local_path)
        destination = self.container_file_path(local.name)
        size = local.stat().st_size if local.exists() else 0

        tried: List[str] = []
        last_output = ""
        for name in [container, *alternatives]:
            if not name or name in tried:
                continue
            tried.append(name)
            result = self.docker.copy_into(str(local), name, destination)
            if result.ok:
                logger.info("Copied %s into %s:%s", local.name, name, destination)
                return StagingResult(
                    error=False,
                    output=f"Copied {local.name} to {name}:{destination}",
                    file_name=local.name,
                    local_path=str(local),
                    container=name,
                    container_path=destination,
                    original_size=size,
                    final_size=size,
                )
            logger.warning("docker cp into %s failed: %s", name, result.output.strip())
            last_output = result.output.strip()

        exists = self.docker.container_exists(container)
        available = self.docker.running_containers()
        message = "\n".join(
            [
                f"Failed to copy {local.name} into container {container}: {last_output}",
                f"Container '{container}' exists: {'yes' if exists else 'no'}",
                f"Tried: {', '.join(tried)}",
                f"Available containers: {', '.join(available) if available else 'none'}",
            ]
        )
        return StagingResult(
            error=True,
            output=message,
            file_name=local.name,
            local_path=str(local),
            container=container,
            container_path=destination,
            original_size=size,
            final_size=size,
        )

    def verify(self, container: str, container_file: str) -> CommandResult:
        return self.docker.exec(container, "ls", "-la", container_file)

    def stage(
        self,
        path: str | Path,
        container: str,
        *,
        mime_type: str | None = None,
        optimize: bool = False,
        verify: bool = False,
        alternatives: Iterable[str] = (),
    ) -> StagingResult:
        source = Path(path)
        if not source.is_file():
            raise StagingError(f"File to stage does not exist: {source}")

        if optimize:
            optimization = optimize_image(
                source, mime_type=mime_type, threshold_bytes=self.optimize_threshold_bytes
            )
        else:
            size = source.stat().st_size
            optimization = OptimizationResult(source, False, size, size)

        result = self.copy_to_container(optimization.path, container, alternatives=alternatives)
        result.image_optimized = optimization.image_optimized
        result.original_size = optimization.original_size
        result.final_size = optimization.final_size

        if result.ok and verify and result.container and result.container_path:
            check = self.verify(result.container, result.container_path)
            result.verified = check.ok
            if check.ok and check.output.strip():
                result.output = f"{result.output}\n{check.output.strip()}"
        return result
