import json
from pathlib import Path

import pytest

from ordinal_inscriber import cli

INSCRIPTION_ID = "c" * 64 + "i1"


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("ordinal_inscriber.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    monkeypatch.setattr("ordinal_inscriber.config._CONFIG_PATH_OVERRIDE", None)
    monkeypatch.setenv("CACHE_DIR", str(tmp_path / "cache"))


def test_parse_reads_saved_output(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    saved = tmp_path / "ord.out"
    saved.write_text(f"inscription: {INSCRIPTION_ID}\nfee: 4200\n")

    cli.main(["parse", str(saved)])

    assert json.loads(capsys.readouterr().out) == {
        "inscriptionId": INSCRIPTION_ID,
        "transactionId": "unknown",
        "feePaid": "4200",
    }


def test_command_prints_inscribe_line(capsys: pytest.CaptureFixture) -> None:
    cli.main(["command", "cat.png", "--fee-rate", "7", "--container", "ord", "--dry-run"])

    assert capsys.readouterr().out.strip() == (
        "docker exec -it ord ord wallet inscribe --fee-rate 7 --file /ord/data/cat.png --dry-run"
    )


def test_command_uses_container_from_environment(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    monkeypatch.setenv("ORD_RPC_HOST", "mynode")

    cli.main(["command", "/tmp/page.html", "--fee-rate", "3"])

    assert capsys.readouterr().out.startswith("docker exec -it mynode ord wallet inscribe --fee-rate 3 --file /tmp/page.html")


def test_invalid_fee_rate_exits_with_error(capsys: pytest.CaptureFixture) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["command", "cat.png", "--fee-rate", "0", "--container", "ord"])

    assert excinfo.value.code == 1
    assert "error: Fee rate must be between" in capsys.readouterr().err


def test_brc20_prints_payload_and_fee(capsys: pytest.CaptureFixture) -> None:
    cli.main(["brc20", "mint", "ordi", "--fee-rate", "10", "--amount", "5", "--container", "ord"])

    lines = capsys.readouterr().out.splitlines()
    assert json.loads(lines[0]) == {"p": "brc-20", "op": "mint", "tick": "ORDI", "amt": "5"}
    assert lines[1].startswith("docker exec -it ord sh -c ")
    assert lines[2] == "estimated fee: 4600 sats (Economy (may take several hours))"


def test_cache_sweep_and_info(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    (cache_dir / "a.png").write_bytes(b"x" * 10)
    monkeypatch.setenv("CACHE_LIMIT_BYTES", "5")

    cli.main(["cache", "sweep"])
    assert "removed 1 files" in capsys.readouterr().out

    cli.main(["cache", "info"])
    assert capsys.readouterr().out.startswith("0 files, 0 bytes of 5 bytes")


def test_missing_config_file_is_reported(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    with pytest.raises(SystemExit):
        cli.main(["--config", str(tmp_path / "nope.yaml"), "cache", "info"])

    assert "Config file not found" in capsys.readouterr().err
