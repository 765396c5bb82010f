"""Network and container connectivity checks for troubleshooting."""

from __future__ import annotations

import json
import logging
import socket
from typing import Any, Callable, Dict, List

from .environment import InterfaceAddress, list_ipv4_interfaces
from .executor import CommandRunner, DockerCLI, PROBE_TIMEOUT

logger = logging.getLogger(__name__)

MIN_USER_PORT = 1024
MAX_PORT = 65535
PING_TARGETS = {"hostDockerInternal": "host.docker.internal", "internet": "8.8.8.8"}


def _container_networks(inspect_output: str) -> Dict[str, Any]:
    try:
        payload = json.loads(inspect_output)
    except json.JSONDecodeError:
        return {}
    if not payload or not isinstance(payload, list):
        return {}
    networks = (payload[0].get("NetworkSettings") or {}).get("Networks") or {}
    return {
        name: {"ipAddress": details.get("IPAddress"), "gateway": details.get("Gateway")}
        for name, details in networks.items()
    }


def check_container(docker: DockerCLI, container: str) -> Dict[str, Any]:
    """Existence, inspect data and an ``echo`` round-trip for ``container``."""

    name = container
    exists = docker.container_exists(name)
    if not exists and not name.endswith("_1"):
        # docker-compose v1 (Umbrel) names carry a _1 suffix
        alternative = f"{name}_1"
        if docker.container_exists(alternative):
            name, exists = alternative, True

    report: Dict[str, Any] = {"name": name, "requested": container, "exists": exists}
    if not exists:
        report["running"] = docker.running_containers()
        return report

    inspect = docker.inspect(name)
    report["inspectOk"] = inspect.ok
    report["networks"] = _container_networks(inspect.output) if inspect.ok else {}
    echo = docker.exec(name, "echo", "Container is responding", timeout=PROBE_TIMEOUT)
    report["responding"] = echo.ok and "Container is responding" in echo.output
    if echo.error:
        report["execError"] = echo.output
    return report


def check_host_connectivity(runner: CommandRunner) -> Dict[str, bool]:
    results = {}
    for label, target in PING_TARGETS.items():
        results[label] = runner.run(["ping", "-c", "1", target], timeout=PROBE_TIMEOUT).ok
    return results


def run_network_diagnostics(
    container: str,
    runner: CommandRunner,
    interfaces: Callable[[], List[InterfaceAddress]] = list_ipv4_interfaces,
) -> Dict[str, Any]:
    docker = DockerCLI(runner)
    report: Dict[str, Any] = {
        "interfaces": [item.as_dict() for item in interfaces()],
        "dockerAvailable": runner.docker_available(),
        "hostConnectivity": check_host_connectivity(runner),
    }
    if report["dockerAvailable"]:
        report["container"] = check_container(docker, container)
    else:
        report["container"] = {"name": container, "exists": False}
    logger.info(
        "Network diagnostics for %s: docker=%s exists=%s",
        container,
        report["dockerAvailable"],
        report["container"]["exists"],
    )
    return report


def validate_port(raw: Any) -> int:
    try:
        port = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid port number") from exc
    if not MIN_USER_PORT <= port <= MAX_PORT:
        raise ValueError("Invalid port number")
    return port


def check_port(port: int, host: str = "0.0.0.0") -> bool:
    """Return ``True`` when nothing is listening on ``port``."""

    port = validate_port(port)
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True
