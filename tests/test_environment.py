import socket
from types import SimpleNamespace

import pytest

from ordinal_inscriber.config import AppConfig
from ordinal_inscriber.environment import (
    DEFAULT_BITCOIN_CONTAINER,
    DEFAULT_ORD_CONTAINER,
    PLATFORM_DOCKER,
    PLATFORM_LOCAL,
    PLATFORM_UMBREL,
    EnvironmentResolver,
    InterfaceAddress,
    detect_platform,
    list_ipv4_interfaces,
    rank_local_addresses,
)
from ordinal_inscriber.probe import ResolutionError


class StubDocker:
    def __init__(self, containers=()):
        self.containers = set(containers)
        self.checked = []

    def container_exists(self, name: str) -> bool:
        self.checked.append(name)
        return name in self.containers


class StubResponse:
    def __init__(self, ok: bool) -> None:
        self.ok = ok


class StubSession:
    def __init__(self, healthy=()):
        self.healthy = set(healthy)
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        if not self.healthy:
            raise ConnectionError("refused")
        return StubResponse(any(url.startswith(base) for base in self.healthy))


def _resolver(config=None, docker=None, session=None, paths=(), interfaces=()):
    return EnvironmentResolver(
        config or AppConfig(),
        docker or StubDocker(),
        session=session or StubSession(),
        path_exists=lambda path: path in paths,
        interfaces=lambda: list(interfaces),
    )


def test_detect_platform_prefers_umbrel_hint() -> None:
    assert detect_platform(AppConfig(umbrel_hint=True), lambda _p: False) == PLATFORM_UMBREL
    assert detect_platform(AppConfig(), lambda p: p == "/umbrel") == PLATFORM_UMBREL
    assert detect_platform(AppConfig(), lambda p: p == "/.dockerenv") == PLATFORM_DOCKER
    assert detect_platform(AppConfig(), lambda _p: False) == PLATFORM_LOCAL


def test_explicit_ord_container_is_used_without_probing() -> None:
    docker = StubDocker()
    resolver = _resolver(AppConfig(ord_container="mynode"), docker)

    result = resolver.ord_container()

    assert result.value == "mynode"
    assert result.source == "env"
    assert docker.checked == []


def test_ord_container_probes_candidates_in_order() -> None:
    docker = StubDocker(["ord-server"])
    resolver = _resolver(docker=docker)

    result = resolver.ord_container()

    assert result.value == "ord-server"
    assert result.source == "probe"
    assert docker.checked == ["ord", "ordinals_ord_1", "ord-server"]


def test_umbrel_probes_umbrel_name_first() -> None:
    resolver = _resolver(AppConfig(umbrel_hint=True))

    assert resolver.ord_container_candidates()[0] == "ordinals_ord_1"


def test_unresolved_containers_fall_back_to_defaults() -> None:
    resolver = _resolver()

    assert resolver.ord_container().value == DEFAULT_ORD_CONTAINER
    assert resolver.ord_container().is_guess
    assert resolver.bitcoin_container().value == DEFAULT_BITCOIN_CONTAINER


def test_strict_resolution_raises_when_nothing_found() -> None:
    resolver = _resolver(AppConfig(strict_resolution=True))

    with pytest.raises(ResolutionError):
        resolver.bitcoin_container()


def test_ord_api_url_explicit_setting_is_trimmed() -> None:
    session = StubSession()
    resolver = _resolver(AppConfig(ord_api_url="http://ord.local:4000/"), session=session)

    result = resolver.ord_api_url()

    assert result.value == "http://ord.local:4000"
    assert session.urls == []


def test_ord_api_url_probes_blockheight() -> None:
    session = StubSession(healthy=["http://localhost:4000"])
    resolver = _resolver(AppConfig(ord_container="ord"), session=session)

    result = resolver.ord_api_url()

    assert result.value == "http://localhost:4000"
    assert session.urls == ["http://ord:80/blockheight", "http://localhost:4000/blockheight"]


def test_ord_api_url_defaults_to_container_url_when_unreachable() -> None:
    resolver = _resolver(AppConfig(ord_container="ord", ord_rpc_port=8080))

    result = resolver.ord_api_url()

    assert result.value == "http://ord:8080"
    assert result.is_guess


def test_rank_local_addresses_orders_bridges_first() -> None:
    interfaces = [
        InterfaceAddress("lo", "127.0.0.1", True),
        InterfaceAddress("eth0", "192.168.1.20", False),
        InterfaceAddress("wlan0", "10.0.0.7", False),
        InterfaceAddress("veth1", "172.18.0.1", False),
        InterfaceAddress("docker0", "192.168.99.1", False),
    ]

    assert rank_local_addresses(interfaces) == [
        "192.168.99.1",
        "172.18.0.1",
        "10.0.0.7",
        "192.168.1.20",
    ]


def test_local_ip_prefers_node_ip_then_simplified_mode() -> None:
    interfaces = [InterfaceAddress("docker0", "172.17.0.1", False)]

    assert _resolver(AppConfig(node_ip="10.1.1.1"), interfaces=interfaces).local_ip().value == "10.1.1.1"
    assert (
        _resolver(AppConfig(simplified_startup=True), interfaces=interfaces).local_ip().value
        == "localhost"
    )
    assert _resolver(interfaces=interfaces).local_ip().value == "172.17.0.1"
    assert _resolver().local_ip().value == "localhost"


def test_list_ipv4_interfaces_skips_other_families() -> None:
    def fake_addrs():
        return {
            "lo": [SimpleNamespace(family=socket.AF_INET, address="127.0.0.1")],
            "eth0": [
                SimpleNamespace(family=socket.AF_INET6, address="fe80::1"),
                SimpleNamespace(family=socket.AF_INET, address="192.168.1.4"),
            ],
        }

    result = list_ipv4_interfaces(fake_addrs)

    assert [(item.name, item.address, item.internal) for item in result] == [
        ("lo", "127.0.0.1", True),
        ("eth0", "192.168.1.4", False),
    ]


def test_describe_reports_sources() -> None:
    resolver = _resolver(AppConfig(ord_container="ord", node_ip="10.0.0.2"), docker=StubDocker(["bitcoind"]))

    summary = resolver.describe()

    assert summary["platform"] == PLATFORM_LOCAL
    assert summary["ordContainer"]["source"] == "env"
    assert summary["bitcoinContainer"] == {
        "value": "bitcoind",
        "source": "probe",
        "attempts": ["bitcoin_bitcoind_1", "bitcoin-node", "bitcoind"],
    }
    assert summary["ordApiUrl"]["source"] == "default"
    assert summary["localIp"]["value"] == "10.0.0.2"
