"""Deployment detection and target resolution.

Decides which platform the service runs on (plain Docker, Umbrel or a local
checkout), which containers hold ``ord`` and ``bitcoind``, where the ``ord``
HTTP API lives and which local address to advertise to the container network.
Every decision goes through :func:`ordinal_inscriber.probe.resolve`, so an
explicit setting always wins and the result records whether it was probed or
guessed.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

import psutil
import requests

from .config import AppConfig
from .executor import DockerCLI
from .probe import SOURCE_ENV, Resolution, first_success, resolve

logger = logging.getLogger(__name__)

PLATFORM_UMBREL = "umbrel"
PLATFORM_DOCKER = "docker"
PLATFORM_LOCAL = "local"

ORD_CONTAINER_CANDIDATES = (
    "ordinals_ord_1",
    "ord",
    "ord-server",
    "bitcoin-ordinals",
    "umbrel-bitcoin-ordinals",
)
BITCOIN_CONTAINER_CANDIDATES = (
    "bitcoin_bitcoind_1",
    "bitcoin-node",
    "bitcoind",
    "bitcoin",
)
DEFAULT_ORD_CONTAINER = "ordinals_ord_1"
DEFAULT_BITCOIN_CONTAINER = "bitcoin_bitcoind_1"
DEFAULT_ORD_RPC_PORT = 80
DEFAULT_ORD_API_PORT = 4000
LOOPBACK_HOSTNAME = "localhost"

UMBREL_PATHS = ("/umbrel", "/home/umbrel/umbrel", "/umbrel-data")
DOCKER_MARKER = "/.dockerenv"
BRIDGE_PREFIXES = ("docker", "br-", "bridge")
API_PROBE_TIMEOUT = 2


@dataclass
class InterfaceAddress:
    name: str
    address: str
    internal: bool

    def as_dict(self) -> dict:
        return {"name": self.name, "address": self.address, "family": "IPv4", "internal": self.internal}


def list_ipv4_interfaces(
    net_if_addrs: Callable[[], Dict[str, Iterable[Any]]] = psutil.net_if_addrs,
) -> List[InterfaceAddress]:
    """Return every IPv4 address bound to a local interface."""

    interfaces: List[InterfaceAddress] = []
    try:
        addresses = net_if_addrs()
    except (OSError, RuntimeError) as exc:
        logger.error("Error detecting network interfaces: %s", exc)
        return interfaces
    for name, entries in addresses.items():
        for entry in entries:
            if entry.family != socket.AF_INET:
                continue
            interfaces.append(
                InterfaceAddress(
                    name=name,
                    address=entry.address,
                    internal=entry.address.startswith("127."),
                )
            )
    return interfaces


def rank_local_addresses(interfaces: Iterable[InterfaceAddress]) -> List[str]:
    """Order non-loopback IPv4 addresses by how likely containers can reach them.

    Bridge interfaces come first, then 172.x, then 10.x, then everything else.
    """

    def tier(item: InterfaceAddress) -> int:
        if item.name.startswith(BRIDGE_PREFIXES):
            return 0
        if item.address.startswith("172."):
            return 1
        if item.address.startswith("10."):
            return 2
        return 3

    usable = [item for item in interfaces if not item.internal]
    # sorted() is stable, so interface order is kept within a tier
    return [item.address for item in sorted(usable, key=tier)]


def detect_platform(
    config: AppConfig,
    path_exists: Callable[[str], bool] = os.path.exists,
) -> str:
    """Return ``umbrel``, ``docker`` or ``local``."""

    if config.umbrel_hint:
        return PLATFORM_UMBREL
    for path in UMBREL_PATHS:
        if path_exists(path):
            return PLATFORM_UMBREL
    if path_exists(DOCKER_MARKER):
        return PLATFORM_DOCKER
    return PLATFORM_LOCAL


class EnvironmentResolver:
    """Resolve container names, API URL and advertised IP for this deployment."""

    def __init__(
        self,
        config: AppConfig,
        docker: DockerCLI,
        *,
        session: Optional[requests.Session] = None,
        path_exists: Callable[[str], bool] = os.path.exists,
        interfaces: Callable[[], List[InterfaceAddress]] = list_ipv4_interfaces,
    ) -> None:
        self.config = config
        self.docker = docker
        self.session = session or requests.Session()
        self._path_exists = path_exists
        self._interfaces = interfaces

    @property
    def platform(self) -> str:
        return detect_platform(self.config, self._path_exists)

    @property
    def is_umbrel(self) -> bool:
        return self.platform == PLATFORM_UMBREL

    def ord_container_candidates(self) -> List[str]:
        candidates = list(ORD_CONTAINER_CANDIDATES)
        if not self.is_umbrel:
            candidates.remove("ord")
            candidates.insert(0, "ord")
        return candidates

    def ord_container(self) -> Resolution[str]:
        return resolve(
            self.config.ord_container,
            self.ord_container_candidates(),
            self.docker.container_exists,
            default=DEFAULT_ORD_CONTAINER,
            label="ord container",
            strict=self.config.strict_resolution,
        )

    def bitcoin_container(self) -> Resolution[str]:
        return resolve(
            self.config.bitcoin_container,
            BITCOIN_CONTAINER_CANDIDATES,
            self.docker.container_exists,
            default=DEFAULT_BITCOIN_CONTAINER,
            label="bitcoin container",
            strict=self.config.strict_resolution,
        )

    def ord_api_candidates(self, ord_container: str | None = None) -> List[str]:
        container = ord_container or self.ord_container().value
        rpc_port = self.config.ord_rpc_port or DEFAULT_ORD_RPC_PORT
        api_port = self.config.ord_api_port or DEFAULT_ORD_API_PORT
        return [f"http://{container}:{rpc_port}", f"http://{LOOPBACK_HOSTNAME}:{api_port}"]

    def _api_responds(self, base_url: str) -> bool:
        response = self.session.get(f"{base_url}/blockheight", timeout=API_PROBE_TIMEOUT)
        return response.ok

    def ord_api_url(self, ord_container: str | None = None) -> Resolution[str]:
        if self.config.ord_api_url:
            return Resolution(self.config.ord_api_url.rstrip("/"), SOURCE_ENV, [])
        candidates = self.ord_api_candidates(ord_container)
        return resolve(
            None,
            candidates,
            self._api_responds,
            default=candidates[0],
            label="ord API URL",
            strict=self.config.strict_resolution,
        )

    def interfaces(self) -> List[InterfaceAddress]:
        return self._interfaces()

    def local_ip(self) -> Resolution[str]:
        if self.config.node_ip:
            return Resolution(self.config.node_ip, SOURCE_ENV, [])
        if self.config.simplified_startup:
            logger.info("Simplified startup mode; advertising %s", LOOPBACK_HOSTNAME)
            return Resolution(LOOPBACK_HOSTNAME, SOURCE_ENV, [])
        ranked = rank_local_addresses(self.interfaces())
        return first_success(ranked, lambda _address: True, default=LOOPBACK_HOSTNAME, label="local IP")

    def describe(self) -> Dict[str, Any]:
        """Summarise every resolution for diagnostics endpoints and the CLI."""

        ord_container = self.ord_container()
        return {
            "platform": self.platform,
            "isUmbrel": self.is_umbrel,
            "simplifiedStartup": self.config.simplified_startup,
            "strictResolution": self.config.strict_resolution,
            "ordContainer": ord_container.as_dict(),
            "bitcoinContainer": self.bitcoin_container().as_dict(),
            "ordApiUrl": self.ord_api_url(ord_container.value).as_dict(),
            "localIp": self.local_ip().as_dict(),
            "containerPath": self.config.container_path,
        }
