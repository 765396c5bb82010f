import json
import socket

import pytest

from ordinal_inscriber.diagnostics import (
    check_container,
    check_port,
    run_network_diagnostics,
    validate_port,
)
from ordinal_inscriber.environment import InterfaceAddress
from ordinal_inscriber.executor import CommandResult, DockerCLI

INSPECT = json.dumps(
    [{"NetworkSettings": {"Networks": {"umbrel_main_network": {"IPAddress": "10.21.21.9", "Gateway": "10.21.21.1"}}}}]
)


class StubRunner:
    def __init__(self, containers=(), docker=True, ping=True) -> None:
        self.containers = set(containers)
        self.docker = docker
        self.ping = ping
        self.commands = []

    def docker_available(self) -> bool:
        return self.docker

    def run(self, command, timeout=None):
        args = list(command)
        self.commands.append(args)
        if args[0] == "ping":
            return CommandResult(not self.ping, "")
        if args[1] == "ps" and "-q" in args:
            name = args[-1].split("=", 1)[1]
            return CommandResult(False, "abc\n" if name in self.containers else "")
        if args[1] == "ps":
            return CommandResult(False, "\n".join(sorted(self.containers)))
        if args[1] == "inspect":
            return CommandResult(False, INSPECT)
        if args[1] == "exec":
            return CommandResult(False, " ".join(args[3:]) + "\n")
        return CommandResult(True, "unexpected")


def test_check_container_falls_back_to_compose_suffix() -> None:
    report = check_container(DockerCLI(StubRunner(["ordinals_ord_1"])), "ordinals_ord")

    assert report["name"] == "ordinals_ord_1"
    assert report["requested"] == "ordinals_ord"
    assert report["responding"] is True
    assert report["networks"] == {"umbrel_main_network": {"ipAddress": "10.21.21.9", "gateway": "10.21.21.1"}}


def test_missing_container_lists_running_ones() -> None:
    report = check_container(DockerCLI(StubRunner(["bitcoind"])), "ord")

    assert report == {"name": "ord", "requested": "ord", "exists": False, "running": ["bitcoind"]}


def test_network_diagnostics_without_docker() -> None:
    runner = StubRunner(docker=False, ping=False)

    report = run_network_diagnostics(
        "ord", runner, interfaces=lambda: [InterfaceAddress("eth0", "192.168.1.2", False)]
    )

    assert report["dockerAvailable"] is False
    assert report["container"] == {"name": "ord", "exists": False}
    assert report["hostConnectivity"] == {"hostDockerInternal": False, "internet": False}
    assert report["interfaces"][0]["address"] == "192.168.1.2"


@pytest.mark.parametrize("raw", ["80", "70000", "abc", None])
def test_validate_port_rejects_out_of_range(raw) -> None:
    with pytest.raises(ValueError, match="Invalid port number"):
        validate_port(raw)


def test_check_port_detects_listener() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(1)
        port = sock.getsockname()[1]
        if port < 1024:
            pytest.skip("ephemeral port below user range")

        assert check_port(port, host="127.0.0.1") is False
