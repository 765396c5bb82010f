"""Quota enforcement for the upload staging directory.

Only files with a tracked extension count against the quota; anything else
in the directory (the OS temp dir by default) is ignored and never deleted.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List

from .config import DEFAULT_CACHE_LIMIT_BYTES

logger = logging.getLogger(__name__)

TRACKED_EXTENSIONS = (
    ".jpg",
    ".jpeg",
    ".png",
    ".webp",
    ".glb",
    ".gltf",
    ".txt",
    ".md",
    ".text",
    ".markdown",
    ".json",
    ".html",
)


class CacheError(RuntimeError):
    """Raised for file names outside the tracked cache."""


@dataclass
class CachedFile:
    name: str
    path: Path
    size: int
    created: float

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "size": self.size,
            "formattedSize": format_byte_size(self.size),
            "created": self.created,
        }


@dataclass
class CacheInfo:
    total_size: int
    file_count: int
    limit_bytes: int
    files: List[CachedFile] = field(default_factory=list)

    @property
    def percent_used(self) -> float:
        if self.limit_bytes <= 0:
            return 100.0
        return min(100.0, round(self.total_size / self.limit_bytes * 100, 2))

    def as_dict(self) -> dict:
        return {
            "totalSize": self.total_size,
            "formattedTotalSize": format_byte_size(self.total_size),
            "fileCount": self.file_count,
            "maxCacheSize": self.limit_bytes,
            "formattedMaxSize": format_byte_size(self.limit_bytes),
            "percentUsed": self.percent_used,
            "files": [item.as_dict() for item in self.files],
        }


def format_byte_size(size: int) -> str:
    if size < 1024:
        return f"{size} bytes"
    if size < 1024 ** 2:
        return f"{size / 1024:.2f} KB"
    if size < 1024 ** 3:
        return f"{size / 1024 ** 2:.2f} MB"
    return f"{size / 1024 ** 3:.2f} GB"


def _created_at(stat: os.stat_result) -> float:
    return getattr(stat, "st_birthtime", stat.st_mtime)


class CacheManager:
    """Inspect and trim tracked files in a single directory."""

    def __init__(
        self,
        directory: str | Path,
        limit_bytes: int = DEFAULT_CACHE_LIMIT_BYTES,
        extensions: Iterable[str] = TRACKED_EXTENSIONS,
    ) -> None:
        self.directory = Path(directory)
        self.limit_bytes = limit_bytes
        self.extensions = tuple(ext.lower() for ext in extensions)

    def is_tracked(self, name: str) -> bool:
        return Path(name).suffix.lower() in self.extensions

    def _scan(self) -> List[CachedFile]:
        files: List[CachedFile] = []
        if not self.directory.is_dir():
            return files
        for entry in os.scandir(self.directory):
            if not self.is_tracked(entry.name):
                continue
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
            except OSError as exc:
                # raced with another delete
                logger.debug("Skipping %s: %s", entry.name, exc)
                continue
            files.append(CachedFile(entry.name, Path(entry.path), stat.st_size, _created_at(stat)))
        files.sort(key=lambda item: (item.created, item.name))
        return files

    def info(self) -> CacheInfo:
        files = self._scan()
        return CacheInfo(
            total_size=sum(item.size for item in files),
            file_count=len(files),
            limit_bytes=self.limit_bytes,
            files=files,
        )

    def sweep(self, keep: Iterable[str] = ()) -> List[str]:
        """Delete the oldest tracked files until the total fits the limit.

        Names in ``keep`` still count toward the total but are never deleted,
        so the upload being processed survives even when it alone exceeds
        the quota.
        """

        protected = set(keep)
        files = self._scan()
        total = sum(item.size for item in files)
        if total <= self.limit_bytes:
            return []

        logger.info(
            "Cache size %s exceeds limit %s, cleaning up",
            format_byte_size(total),
            format_byte_size(self.limit_bytes),
        )
        removed: List[str] = []
        for item in files:
            if total <= self.limit_bytes:
                break
            if item.name in protected:
                continue
            try:
                item.path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.error("Failed to delete cached file %s: %s", item.name, exc)
                continue
            total -= item.size
            removed.append(item.name)
            logger.debug("Deleted cached file %s (%s)", item.name, format_byte_size(item.size))
        logger.info("Cache cleanup removed %d files; %s remaining", len(removed), format_byte_size(total))
        return removed

    def clear_all(self) -> int:
        count = 0
        for item in self._scan():
            try:
                item.path.unlink()
            except FileNotFoundError:
                continue
            count += 1
        logger.info("Cleared %d cached files", count)
        return count

    def path_for(self, name: str) -> Path:
        """Return the path of a tracked file, refusing names that escape the cache."""

        if not name or Path(name).name != name or name in (".", ".."):
            raise CacheError(f"Invalid file name: {name!r}")
        if not self.is_tracked(name):
            raise CacheError(f"File type is not managed by the cache: {name}")
        path = self.directory / name
        if not path.is_file():
            raise FileNotFoundError(name)
        return path

    def delete(self, name: str) -> None:
        self.path_for(name).unlink()
        logger.info("Deleted cached file %s", name)
