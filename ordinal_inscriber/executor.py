"""Subprocess execution with timeouts and thin Docker CLI helpers."""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from dataclasses import asdict, dataclass
from typing import List, Sequence

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
COPY_TIMEOUT = 60
INSCRIBE_TIMEOUT = 180
PROBE_TIMEOUT = 5

DOCKER_MISSING_MESSAGE = (
    "Docker is not available in this environment. This application requires Docker "
    "and a Bitcoin Ordinals node to function properly."
)


@dataclass
class CommandResult:
    """Outcome of a shell-out: an error flag plus the raw text output."""

    error: bool
    output: str

    @property
    def ok(self) -> bool:
        return not self.error

    def as_dict(self) -> dict:
        return asdict(self)


def split_command(command: str | Sequence[str]) -> List[str]:
    """Normalise a command string or sequence into an argument list."""

    if isinstance(command, str):
        try:
            return shlex.split(command)
        except ValueError as exc:
            raise ValueError(f"Unable to parse command: {exc}") from exc
    return [str(part) for part in command]


def strip_tty_flags(args: Sequence[str]) -> List[str]:
    """Drop ``-it``/``-t`` from ``docker exec`` since the server has no TTY."""

    args = list(args)
    if len(args) < 2 or args[0] != "docker" or args[1] != "exec":
        return args
    cleaned = args[:2]
    for index, arg in enumerate(args[2:], start=2):
        if arg in {"-it", "-ti", "-t"}:
            continue
        if arg == "--tty":
            continue
        if not arg.startswith("-"):
            cleaned.extend(args[index:])
            break
        cleaned.append(arg)
    return cleaned


class CommandRunner:
    """Run external commands synchronously with a per-call timeout.

    Failures never raise: a non-zero exit, a timeout or a missing binary all
    come back as ``CommandResult(error=True, output=...)``.
    """

    def __init__(self, default_timeout: int = DEFAULT_TIMEOUT) -> None:
        self.default_timeout = default_timeout

    def docker_available(self) -> bool:
        return shutil.which("docker") is not None

    def run(self, command: str | Sequence[str], timeout: int | None = None) -> CommandResult:
        try:
            args = strip_tty_flags(split_command(command))
        except ValueError as exc:
            return CommandResult(error=True, output=str(exc))
        if not args:
            return CommandResult(error=True, output="Empty command")

        if args[0] == "docker" and not self.docker_available():
            return CommandResult(error=True, output=DOCKER_MISSING_MESSAGE)

        limit = timeout or self.default_timeout
        logger.debug("Running %s (timeout=%ss)", shlex.join(args), limit)
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=limit,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.error("Command timed out after %ss: %s", limit, shlex.join(args))
            return CommandResult(error=True, output=f"Command timed out after {limit} seconds")
        except OSError as exc:
            logger.error("Command execution failed: %s: %s", shlex.join(args), exc)
            return CommandResult(error=True, output=str(exc))

        output = completed.stdout or completed.stderr or ""
        if completed.returncode != 0:
            logger.error(
                "Command exited with %s: %s", completed.returncode, shlex.join(args)
            )
            detail = completed.stderr or completed.stdout or ""
            return CommandResult(
                error=True,
                output=f"Command failed with exit code {completed.returncode}: {detail}".rstrip(),
            )
        return CommandResult(error=False, output=output)


class DockerCLI:
    """Docker CLI operations used by the resolver, stager and diagnostics."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def container_exists(self, name: str) -> bool:
        result = self.runner.run(["docker", "ps", "-q", "-f", f"name={name}"], timeout=PROBE_TIMEOUT)
        return result.ok and result.output.strip() != ""

    def running_containers(self) -> List[str]:
        result = self.runner.run(["docker", "ps", "--format", "{{.Names}}"], timeout=PROBE_TIMEOUT)
        if result.error:
            return []
        return [line.strip() for line in result.output.splitlines() if line.strip()]

    def copy_into(self, local_path: str, container: str, destination: str) -> CommandResult:
        return self.runner.run(
            ["docker", "cp", local_path, f"{container}:{destination}"], timeout=COPY_TIMEOUT
        )

    def exec(self, container: str, *args: str, timeout: int | None = None) -> CommandResult:
        return self.runner.run(["docker", "exec", container, *args], timeout=timeout)

    def inspect(self, container: str) -> CommandResult:
        return self.runner.run(["docker", "inspect", container], timeout=PROBE_TIMEOUT)

    def stats(self, container: str) -> CommandResult:
        return self.runner.run(
            [
                "docker",
                "stats",
                "--no-stream",
                "--format",
                "{{.Name}} cpu={{.CPUPerc}} mem={{.MemUsage}}",
                container,
            ],
            timeout=PROBE_TIMEOUT * 2,
        )
