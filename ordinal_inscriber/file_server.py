"""Owned handle for the short-lived HTTP server that feeds files to containers."""

from __future__ import annotations

import logging
import socket
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from .executor import CommandResult

logger = logging.getLogger(__name__)

STARTUP_TIMEOUT = 5.0
STOP_GRACE_SECONDS = 3.0
POLL_INTERVAL = 0.1


class FileServerError(RuntimeError):
    """Raised when the file server cannot be started."""


def port_accepts_connections(port: int, host: str = "127.0.0.1") -> bool:
    try:
        with socket.create_connection((host, port), timeout=POLL_INTERVAL * 5):
            return True
    except OSError:
        return False


class FileServerHandle:
    """At most one ``python -m http.server`` child process per handle."""

    def __init__(self, port: int, *, startup_timeout: float = STARTUP_TIMEOUT) -> None:
        self.port = port
        self.startup_timeout = startup_timeout
        self.directory: Optional[Path] = None
        self._process: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def _spawn(self, directory: Path) -> subprocess.Popen:
        return subprocess.Popen(
            [sys.executable, "-m", "http.server", str(self.port), "--directory", str(directory)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )

    def start(self, directory: str | Path, port: int | None = None) -> CommandResult:
        """Serve ``directory`` on ``port`` (default :attr:`port`), replacing any previous server."""

        root = Path(directory)
        if not root.is_dir():
            raise FileServerError(f"Directory to serve does not exist: {root}")

        with self._lock:
            self._stop_locked()
            if port:
                self.port = port
            try:
                process = self._spawn(root)
            except OSError as exc:
                logger.error("Failed to start file server on port %s: %s", self.port, exc)
                return CommandResult(error=True, output=f"Failed to start file server: {exc}")

            deadline = time.monotonic() + self.startup_timeout
            while time.monotonic() < deadline:
                if process.poll() is not None:
                    break
                if port_accepts_connections(self.port):
                    self._process = process
                    self.directory = root
                    logger.info("File server started on port %s serving %s", self.port, root)
                    return CommandResult(
                        error=False, output=f"File server started on port {self.port}"
                    )
                time.sleep(POLL_INTERVAL)

            self._terminate(process)
            logger.error("File server on port %s did not come up", self.port)
            return CommandResult(
                error=True,
                output=f"File server did not start listening on port {self.port} within "
                f"{self.startup_timeout:g} seconds",
            )

    @staticmethod
    def _terminate(process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=STOP_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _stop_locked(self) -> bool:
        process, self._process = self._process, None
        self.directory = None
        if process is None:
            return False
        self._terminate(process)
        logger.info("File server on port %s stopped", self.port)
        return True

    def stop(self) -> bool:
        """Stop the server; returns ``False`` when nothing was running."""

        with self._lock:
            return self._stop_locked()

    def __enter__(self) -> "FileServerHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
